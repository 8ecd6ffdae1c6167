"""
Docketsync Database Module.

Provides database connection management and repositories for tracking state.
Uses SQLAlchemy Core with either a DATABASE_URL or the Cloud SQL Python Connector.
"""

from docketsync.db.connection import DatabaseConnection
from docketsync.db.unit_of_work import UnitOfWork

__all__ = ["DatabaseConnection", "UnitOfWork"]
