"""Dune Analytics execution API client.

API docs: https://docs.dune.com/api-reference/executions/endpoint/execute-query
Executions are asynchronous: submit returns an execution id, and results are
fetched until the execution reports a terminal state.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ..errors import RemoteServiceError
from ..models import ExecutionHandle, ExecutionState, ExecutionStatus

logger = logging.getLogger(__name__)

API_BASE = "https://api.dune.com/api/v1"
API_KEY_HEADER = "X-Dune-API-Key"

DEFAULT_TIMEOUT = httpx.Timeout(30.0, connect=10.0)


def new_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)


def _error_details(exc: httpx.HTTPError) -> Any:
    """Best available description of an upstream failure."""
    if not isinstance(exc, httpx.HTTPStatusError):
        return str(exc)
    response = exc.response
    try:
        return response.json()
    except ValueError:
        return response.text or str(exc)


def _headers(api_key: str) -> dict[str, str]:
    if not api_key:
        raise RemoteServiceError("DUNE_API_KEY is not configured")
    return {API_KEY_HEADER: api_key}


async def execute_query(
    query_id: int,
    parameters: dict[str, Any],
    api_key: str,
    api_base: str = API_BASE,
    client: Optional[httpx.AsyncClient] = None,
) -> ExecutionHandle:
    """Start a parameterized query execution.

    Args:
        query_id: Dune query to execute.
        parameters: Values for the query's parameters.
        api_key: Dune API key.
        api_base: API root URL.
        client: Optional shared client; a short-lived one is opened otherwise.

    Returns:
        ExecutionHandle with the new execution id.
    """
    if client is None:
        async with new_client() as owned:
            return await execute_query(query_id, parameters, api_key, api_base, owned)

    url = f"{api_base}/query/{query_id}/execute"
    try:
        response = await client.post(url, json={"query_parameters": parameters}, headers=_headers(api_key))
        response.raise_for_status()
        data = response.json()
    except httpx.HTTPError as exc:
        details = _error_details(exc)
        logger.warning("Dune execute request for query %s failed: %s", query_id, details)
        raise RemoteServiceError(f"Dune execute request failed: {exc}", details) from exc
    except ValueError as exc:
        raise RemoteServiceError("Dune execute response was not valid JSON", response.text) from exc

    execution_id = data.get("execution_id") if isinstance(data, dict) else None
    if not execution_id:
        raise RemoteServiceError("Dune execute response has no execution_id", data)

    return ExecutionHandle(execution_id=str(execution_id), state=data.get("state"))


async def fetch_execution_results(
    execution_id: str,
    api_key: str,
    api_base: str = API_BASE,
    client: Optional[httpx.AsyncClient] = None,
) -> ExecutionStatus:
    """Fetch the current state of an execution, with its rows once completed."""
    if client is None:
        async with new_client() as owned:
            return await fetch_execution_results(execution_id, api_key, api_base, owned)

    url = f"{api_base}/execution/{execution_id}/results"
    try:
        response = await client.get(url, headers=_headers(api_key))
        response.raise_for_status()
        data = response.json()
    except httpx.HTTPError as exc:
        details = _error_details(exc)
        logger.warning("Dune results request for execution %s failed: %s", execution_id, details)
        raise RemoteServiceError(f"Dune results request failed: {exc}", details) from exc
    except ValueError as exc:
        raise RemoteServiceError("Dune results response was not valid JSON", response.text) from exc

    if not isinstance(data, dict):
        raise RemoteServiceError("Dune results response is not an object", data)

    raw_state = data.get("state")
    state = ExecutionState.parse(raw_state)
    rows: list[dict] = []
    if state is not None and state.is_completed:
        result = data.get("result")
        raw_rows = result.get("rows") if isinstance(result, dict) else None
        if isinstance(raw_rows, list):
            rows = [r for r in raw_rows if isinstance(r, dict)]

    return ExecutionStatus(
        execution_id=execution_id,
        state=state,
        raw_state=raw_state,
        rows=rows,
        error=data.get("error"),
    )
