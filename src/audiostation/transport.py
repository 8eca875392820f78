"""Single HTTP exchange for a built Request."""

import asyncio
import logging
from typing import Optional

import httpx

from .exceptions import RequestTimeoutError
from .request import Request

logger = logging.getLogger(__name__)


async def send_request(
    client: httpx.AsyncClient,
    request: Request,
    sid: Optional[str] = None,
    timeout: Optional[float] = None,
    stream: bool = False,
) -> httpx.Response:
    """Send a Request and return the raw httpx response.

    With ``stream=True`` only the headers are awaited; the caller owns the
    response and must close it.

    Args:
        client: Shared httpx.AsyncClient
        request: Request to send
        sid: Session id to stamp, or None for unauthenticated calls
        timeout: Deadline in seconds for the exchange (None: client default)
        stream: Return before reading the body

    Returns:
        httpx.Response

    Raises:
        RequestTimeoutError: If the deadline or an httpx timeout is hit
        httpx.HTTPError: For other transport failures
    """
    http_request = request.to_httpx(client, sid)
    logger.debug(f"{request.http_method} {request.api}.{request.action} v{request.version} -> {request.url_path}")

    try:
        if timeout is None:
            return await client.send(http_request, stream=stream)
        return await asyncio.wait_for(client.send(http_request, stream=stream), timeout)
    except (asyncio.TimeoutError, httpx.TimeoutException) as e:
        logger.warning(f"Request {request.api}.{request.action} timed out")
        raise RequestTimeoutError(f"{request.api}.{request.action} timed out") from e
