"""
Logging setup for the workflow engine.

Records carry workflow context through ``extra``: the entity being moved,
the transition and who asked for it. Both formatters surface that context;
request-scoped fields (request id, actor) are filled in by
``RequestContextFilter`` when the record is emitted inside a request.

    DEBUG=True or TESTING  → WorkflowFormatter (one line, colored level)
    otherwise              → JSONFormatter (one object per line)
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Workflow fields copied from a record into the JSON payload when present
CONTEXT_FIELDS = (
    "request_id",
    "actor_id",
    "actor_role",
    "entity_type",
    "entity_id",
    "transition",
    "method",
    "path",
    "status",
    "duration_ms",
)

LEVEL_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[35m",
}
RESET = "\033[0m"


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            val = getattr(record, key, None)
            if val not in (None, ""):
                entry[key] = val
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class WorkflowFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger [tender:t-1 publish]: message``"""

    def format(self, record: logging.LogRecord) -> str:
        color = LEVEL_COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{color}{ts} {record.levelname:<8}{RESET} {record.name}{entity_tag(record)}: {record.getMessage()}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def entity_tag(record: logging.LogRecord) -> str:
    entity_type = getattr(record, "entity_type", None)
    if not entity_type:
        return ""
    tag = f"{entity_type}:{getattr(record, 'entity_id', None) or '?'}"
    transition = getattr(record, "transition", None)
    if transition:
        tag += f" {transition}"
    return f" [{tag}]"


class RequestContextFilter(logging.Filter):
    """Stamp records emitted during a request with its id and actor."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not has_request_context():
            return True
        if getattr(record, "request_id", None) is None:
            record.request_id = getattr(g, "request_id", None)
        actor = getattr(g, "actor", None)
        if actor is not None:
            if getattr(record, "actor_id", None) is None:
                record.actor_id = actor.id
            if getattr(record, "actor_role", None) is None:
                record.actor_role = actor.role
        return True


def configure_logging(app):
    """Install a single stderr handler on the root logger. LOG_LEVEL overrides the default level."""
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = app.config.get("LOG_LEVEL") or os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG")
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if is_prod else WorkflowFormatter())
    handler.setLevel(level)
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in ("werkzeug", "sqlalchemy.engine"):
        logging.getLogger(name).setLevel(logging.WARNING)

    app.logger.setLevel(level)
    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "json" if is_prod else "workflow")
