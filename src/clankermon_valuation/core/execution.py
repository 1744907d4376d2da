"""Submit-then-poll execution engine.

Turns one evaluation request into a remote Dune execution and waits for it
with a fixed-delay, bounded loop. The wait is an ``asyncio.sleep`` so it only
suspends the calling coroutine, and cancelling that coroutine aborts the loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

from .clients import dune
from .errors import ExecutionFailedError, PollTimeoutError, ValidationError
from .models import EvaluationRequest, ExecutionHandle

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 30
DEFAULT_INTERVAL_SECONDS = 2.0

Sleep = Callable[[float], Awaitable[Any]]


def _is_blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


def validate_request(level: Any, cm_type: Any) -> EvaluationRequest:
    """Reject missing or empty inputs before anything touches the network."""
    missing = [name for name, value in (("level", level), ("cm_type", cm_type)) if _is_blank(value)]
    if missing:
        raise ValidationError("Missing parameters. Please provide level and cm_type")
    return EvaluationRequest(level=str(level).strip(), cm_type=str(cm_type).strip())


async def submit(
    level: Any,
    cm_type: Any,
    api_key: str,
    query_id: int,
    api_base: str = dune.API_BASE,
    client: Optional[httpx.AsyncClient] = None,
) -> ExecutionHandle:
    """Submit one valuation query execution for the given level and type."""
    request = validate_request(level, cm_type)
    handle = await dune.execute_query(
        query_id,
        {"level": request.level, "cm_type": request.cm_type},
        api_key,
        api_base,
        client,
    )
    logger.info("Execution ID: %s (level=%s, type=%s)", handle.execution_id, request.level, request.cm_type)
    return handle


async def await_completion(
    handle: ExecutionHandle,
    api_key: str,
    api_base: str = dune.API_BASE,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
    client: Optional[httpx.AsyncClient] = None,
    sleep: Sleep = asyncio.sleep,
) -> list[dict]:
    """Wait for an execution to complete and return its rows.

    Each attempt sleeps ``interval_seconds`` and then fetches the execution
    state once, so at most ``max_attempts`` fetches are made. A terminal
    failure state ends the wait immediately.

    Raises:
        PollTimeoutError: no completed state within ``max_attempts`` fetches.
        ExecutionFailedError: the execution failed, was cancelled or expired.
        RemoteServiceError: a status fetch failed.
    """
    attempts = 0
    while attempts < max_attempts:
        await sleep(interval_seconds)
        status = await dune.fetch_execution_results(handle.execution_id, api_key, api_base, client)
        attempts += 1
        logger.debug("Execution %s attempt %d/%d: %s", handle.execution_id, attempts, max_attempts, status.raw_state)

        if status.is_completed:
            logger.info("Execution %s completed after %d attempt(s)", handle.execution_id, attempts)
            return status.rows
        if status.is_failed:
            logger.warning("Execution %s ended in %s", handle.execution_id, status.raw_state)
            raise ExecutionFailedError(
                f"Execution {handle.execution_id} ended in {status.raw_state}",
                status.error or {"state": status.raw_state},
            )

    logger.warning("Execution %s timed out after %d attempts", handle.execution_id, attempts)
    raise PollTimeoutError(handle.execution_id, attempts)
