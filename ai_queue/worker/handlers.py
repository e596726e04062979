"""
Job handlers registry and dispatch.

The generation logic itself lives outside the queue: the application
registers one handler per request type at startup. Handlers must tolerate
being run more than once for the same job, since a job whose lease expires
is claimed again.
"""

import logging
from typing import Awaitable, Callable

from ai_queue.constants import MISSING_PROMPT_MESSAGE, RequestType
from ai_queue.types.job import JobContext, JobResult

logger = logging.getLogger(__name__)

# Type alias for job handler functions
JobHandler = Callable[[JobContext], Awaitable[JobResult]]

# Handler registry
_handlers: dict[RequestType, JobHandler] = {}


def register_handler(request_type: RequestType) -> Callable[[JobHandler], JobHandler]:
    """
    Decorator to register a job handler.

    Args:
        request_type: The request type this handler processes.

    Returns:
        Decorator function.

    Example:
        @register_handler(RequestType.CONTENT_SUMMARY)
        async def summarize(context: JobContext) -> JobResult:
            ...
    """
    def decorator(handler: JobHandler) -> JobHandler:
        _handlers[request_type] = handler
        logger.info(f"Registered handler for request type: {request_type}")
        return handler
    return decorator


def unregister_handler(request_type: RequestType) -> None:
    """Remove the handler for a request type, if any."""
    _handlers.pop(request_type, None)


def get_handler(request_type: RequestType) -> JobHandler | None:
    """
    Get the handler for a request type.

    Args:
        request_type: The request type.

    Returns:
        The handler function or None if not found.
    """
    return _handlers.get(request_type)


def list_handlers() -> list[RequestType]:
    """List all request types with a registered handler."""
    return list(_handlers.keys())


async def execute_job(context: JobContext) -> JobResult:
    """
    Execute a job using the handler for its request type.

    Never raises: a missing handler, a missing prompt and handler
    exceptions all come back as failed results.

    Args:
        context: The job context.

    Returns:
        JobResult from the handler.
    """
    handler = get_handler(context.request_type)

    if handler is None:
        logger.error(
            f"No handler for request type: {context.request_type}",
            extra={"job_id": str(context.job_id)},
        )
        return JobResult(
            success=False,
            error=f"No handler registered for request type: {context.request_type}",
        )

    if context.prompt is None:
        logger.error(
            "Job missing required prompt in inputData",
            extra={"job_id": str(context.job_id)},
        )
        return JobResult(success=False, error=MISSING_PROMPT_MESSAGE)

    try:
        return await handler(context)
    except Exception as e:
        logger.exception(
            "Handler raised exception",
            extra={"job_id": str(context.job_id), "error": str(e)},
        )
        return JobResult(
            success=False,
            error=f"Handler exception: {e}",
        )
