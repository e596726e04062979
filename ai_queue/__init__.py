"""
AI Content Queue

Durable PostgreSQL-backed job queue for asynchronous AI content generation:
atomic SKIP LOCKED claims, lease-based crash recovery, idempotent submission,
and dead-letter supervision.
"""

__version__ = "1.0.0"
