"""Map task queue errors onto HTTP responses for the batch endpoints."""

import functools
import logging
from typing import Any, Callable, TypeVar

from fastapi import HTTPException, status

from docbatch.jobs.errors import (
    InvalidInputError,
    InvalidStateError,
    RetryLimitExceededError,
    TaskNotFoundError,
)

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def handle_batch_errors(func: F) -> F:
    """Turn structural task errors into HTTPExceptions with a logged warning.

    InvalidInputError -> 400, TaskNotFoundError -> 404,
    InvalidStateError / RetryLimitExceededError -> 409.
    """
    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return await func(*args, **kwargs)

        except TaskNotFoundError as e:
            logger.warning("Task not found", extra={"task_id": e.task_id})
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)

        except InvalidInputError as e:
            logger.warning("Rejected batch request: %s", e.message, extra={"task_id": e.task_id})
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

        except (InvalidStateError, RetryLimitExceededError) as e:
            logger.warning(
                "Operation not allowed: %s", e.message, extra={"task_id": e.task_id}
            )
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)

    return wrapper  # type: ignore
