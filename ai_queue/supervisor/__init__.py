"""
Supervisor module.
Contains the supervisor that dead-letters exhausted jobs and applies retention.
"""

from ai_queue.supervisor.main import Supervisor, run

__all__ = ["Supervisor", "run"]
