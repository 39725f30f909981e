"""
CivicTrack domain models.

``db`` is the single Flask-SQLAlchemy handle shared by every model module
and service.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
