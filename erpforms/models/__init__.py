"""
SQLAlchemy extension instance and shared model helpers.

Every model module imports ``db`` from here:

    from erpforms.models import db
"""

import uuid
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def _utcnow():
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Generate a fresh string primary key."""
    return str(uuid.uuid4())
