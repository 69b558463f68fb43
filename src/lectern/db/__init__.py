"""Lectern database layer."""

from lectern.db.connection import Database
from lectern.db.migrations import MIGRATIONS, initialize, run_migrations
from lectern.db.repository import Repository
from lectern.db.vectors import VectorStore, ensure_vec_table

__all__ = [
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "Repository",
    "VectorStore",
    "ensure_vec_table",
]
