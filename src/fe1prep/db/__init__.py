"""Database module for SQLite persistence.

Provides:
- Database connection management
- Schema initialization
- Repository functions for content, progress and simulations
"""

from fe1prep.db.database import get_db, init_db

__all__ = ["get_db", "init_db"]
