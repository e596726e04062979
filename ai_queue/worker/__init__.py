"""
Worker module.
Contains the polling worker and the handler registry.
"""

from ai_queue.worker.handlers import register_handler
from ai_queue.worker.main import Worker, run

__all__ = ["Worker", "register_handler", "run"]
