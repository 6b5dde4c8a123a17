"""Shared HTTP helpers for integration adapters.

Provides a single-attempt request wrapper that converts transport and
status failures into typed errors, and an async pagination helper.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from formbridge.integrations.errors import RemoteTimeout, RemoteUnavailable, error_for_response

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


async def send_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    context: str = "",
    allowed_status: tuple[int, ...] = (),
    **kwargs: Any,
) -> httpx.Response:
    """Make one HTTP request and raise a typed error on failure.

    There is no retry: a failed call is reported to the caller, which
    decides whether the failure is fatal.

    Args:
        client: The httpx AsyncClient to use.
        method: HTTP method (GET, POST, etc.).
        url: The URL to request.
        context: Short description used in error messages.
        allowed_status: Non-2xx status codes returned to the caller instead of raised.
        **kwargs: Additional arguments passed to client.request().

    Returns:
        The HTTP response.

    Raises:
        RemoteTimeout: If the request timed out.
        RemoteUnavailable: If the remote could not be reached or failed.
        IntegrationError: The typed error for any other non-success status.
    """
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as exc:
        logger.warning("Request to %s timed out: %s", url, exc)
        raise RemoteTimeout(f"{context or url}: request timed out") from exc
    except httpx.RequestError as exc:
        logger.warning("Request to %s failed: %s", url, exc)
        raise RemoteUnavailable(f"{context or url}: {exc}") from exc

    if response.is_success or response.status_code in allowed_status:
        return response

    raise error_for_response(response, context)


async def paginate_offset(
    client: httpx.AsyncClient,
    url: str,
    *,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    page_size: int = 100,
    results_key: str = "results",
    total_key: str | None = "total",
    offset_param: str = "offset",
    limit_param: str = "limit",
    max_pages: int = 100,
    context: str = "",
    **kwargs: Any,
) -> AsyncIterator[list[dict[str, Any]]]:
    """Async generator for offset-based pagination.

    Args:
        client: The httpx AsyncClient.
        url: Base URL to paginate.
        params: Additional query parameters.
        headers: Additional headers.
        page_size: Number of records per page.
        results_key: JSON key containing the results array.
        total_key: JSON key containing total count (None to paginate until empty).
        offset_param: Query parameter name for offset.
        limit_param: Query parameter name for limit.
        max_pages: Safety limit on number of pages.
        context: Short description used in error messages.
        **kwargs: Additional arguments passed to send_request(), e.g. ``auth``.

    Yields:
        Lists of records from each page.
    """
    offset = 0
    request_params = dict(params or {})

    for _ in range(max_pages):
        request_params[offset_param] = offset
        request_params[limit_param] = page_size

        response = await send_request(
            client, "GET", url,
            params=request_params,
            headers=headers,
            context=context,
            **kwargs,
        )
        data = response.json()

        results = data.get(results_key, [])
        if not results:
            break

        yield results

        offset += len(results)

        if total_key and total_key in data:
            if offset >= data[total_key]:
                break
        elif len(results) < page_size:
            break
