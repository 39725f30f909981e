"""
Access Guard: resolves the calling actor for API requests.

Authentication happens upstream. By the time a request reaches the
engine it carries an already verified identity in two headers:

    X-Actor-Id     opaque actor id
    X-Actor-Role   one of user, admin, area_super_admin, department_admin, tender

The guard only turns these into ``g.actor``. It rejects unknown roles
and the internal ``system`` role outright (403). Requests without headers
pass through with ``g.actor = None``; endpoints that need an actor call
``require_actor()``.

Chain order:
  timing.py  →  actor_context.py  →  route handler
"""

import logging

from flask import g, request

from civictrack.services.transition_validator import COLLABORATOR_ROLES, Actor
from civictrack.utils.errors import E, api_error

logger = logging.getLogger(__name__)

ACTOR_ID_HEADER = "X-Actor-Id"
ACTOR_ROLE_HEADER = "X-Actor-Role"

# Paths that never need an actor
ACTOR_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def init_actor_context(app):
    """Register the actor resolution hook as a before_request handler."""

    @app.before_request
    def _actor_context():
        g.actor = None

        if not request.path.startswith("/api/v1/"):
            return None
        for prefix in ACTOR_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None

        actor_id = (request.headers.get(ACTOR_ID_HEADER) or "").strip()
        role = (request.headers.get(ACTOR_ROLE_HEADER) or "").strip()
        if not actor_id and not role:
            return None

        if role not in COLLABORATOR_ROLES:
            logger.warning(
                "Rejected actor %r with role %r", actor_id, role,
                extra={"actor_role": role},
            )
            return api_error(E.FORBIDDEN, f"Role '{role}' is not accepted")
        if not actor_id:
            return api_error(E.UNAUTHORIZED, f"{ACTOR_ID_HEADER} header is required")

        g.actor = Actor(id=actor_id, role=role)
        return None


def require_actor():
    """
    Return ``(actor, None)`` or ``(None, error_response)``.

    Usage::

        actor, err = require_actor()
        if err:
            return err
    """
    actor = getattr(g, "actor", None)
    if actor is None:
        return None, api_error(
            E.UNAUTHORIZED,
            f"{ACTOR_ID_HEADER} and {ACTOR_ROLE_HEADER} headers are required",
        )
    return actor, None
