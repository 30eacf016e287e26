"""Outermost error boundary for public service methods."""

import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from pydantic import ValidationError

from provenance.core.exceptions import BadRequestError, InternalError, ProvenanceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _describe_validation(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "value"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "Invalid request format: " + "; ".join(parts)


def service_boundary(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Pass domain errors through, turn everything else into a tagged failure.

    Malformed values surface as BadRequest. Unexpected faults are logged with
    full context and reported as a generic InternalError so storage details
    never reach the caller.
    """

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await func(*args, **kwargs)
        except ProvenanceError:
            raise
        except ValidationError as exc:
            raise BadRequestError(_describe_validation(exc)) from exc
        except Exception as exc:
            logger.exception("Unexpected fault in %s", func.__qualname__)
            raise InternalError() from exc

    return wrapper
