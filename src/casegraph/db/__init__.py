"""Database layer for CaseGraph (SQLAlchemy 2.0 async)."""

from __future__ import annotations

from casegraph.db.base import Base
from casegraph.db.engine import DatabaseManager

__all__ = ["Base", "DatabaseManager"]
