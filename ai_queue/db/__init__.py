"""
Database module.
Contains database connection, models, and repository implementations.
"""

from ai_queue.db.connection import Database
from ai_queue.db.models import AiQueueJob, Base
from ai_queue.db.repository import JobRepository

__all__ = [
    "Database",
    "AiQueueJob",
    "Base",
    "JobRepository",
]
