"""Database helper utilities for ensuring schema consistency."""
from __future__ import annotations

from sqlalchemy import inspect

from .extensions import db


def ensure_database_schema() -> None:
    """Create the account tables on first start.

    Generated chapters are never stored, so the only persisted state is the
    ``users`` table behind sign-in. Runs on every application start.
    """

    # Import locally to avoid circular import issues during application setup.
    from .models import User

    inspector = inspect(db.engine)
    if User.__tablename__ not in inspector.get_table_names():
        db.create_all()
