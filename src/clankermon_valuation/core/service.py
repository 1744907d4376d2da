"""Evaluation service: submit, wait, format.

The single entry point used by the JSON endpoint, the frame and the MCP tool.
Every call runs its own remote execution; nothing is shared or cached between
calls.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

import httpx

from .clients import dune
from .execution import (
    DEFAULT_INTERVAL_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    Sleep,
    await_completion,
    submit,
    validate_request,
)
from .formatting import format_result
from .models import EvaluationResult

logger = logging.getLogger(__name__)


class EvaluationService:
    """Evaluates a Clankermon level and type against the valuation query."""

    def __init__(
        self,
        api_key: str,
        query_id: int,
        api_base: str = dune.API_BASE,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        donation_address: Optional[str] = None,
        sleep: Optional[Sleep] = None,
        client_factory: Callable[[], httpx.AsyncClient] = dune.new_client,
    ):
        self.api_key = api_key
        self.query_id = query_id
        self.api_base = api_base
        self.max_attempts = max_attempts
        self.interval_seconds = interval_seconds
        self.donation_address = donation_address
        self._sleep = sleep or asyncio.sleep
        self._client_factory = client_factory

    @classmethod
    def from_settings(cls, settings) -> "EvaluationService":
        return cls(
            api_key=settings.dune_api_key,
            query_id=settings.dune_query_id,
            api_base=settings.dune_api_base,
            max_attempts=settings.poll_max_attempts,
            interval_seconds=settings.poll_interval_seconds,
            donation_address=settings.donation_address,
        )

    async def evaluate(self, level: Any, cm_type: Any) -> EvaluationResult:
        """Run the valuation query for ``level`` and ``cm_type``.

        Raises:
            ValidationError: level or type missing; no request is sent.
            RemoteServiceError: submission or a status fetch failed.
            PollTimeoutError: the execution did not complete in time.
        """
        request = validate_request(level, cm_type)
        logger.info("Evaluating Clankermon: Level %s, Type %s", request.level, request.cm_type)

        async with self._client_factory() as client:
            handle = await submit(request.level, request.cm_type, self.api_key, self.query_id, self.api_base, client)
            rows = await await_completion(
                handle,
                self.api_key,
                self.api_base,
                max_attempts=self.max_attempts,
                interval_seconds=self.interval_seconds,
                client=client,
                sleep=self._sleep,
            )
        return format_result(request.level, request.cm_type, rows, self.donation_address)
