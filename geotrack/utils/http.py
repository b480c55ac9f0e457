# geotrack/utils/http.py
import httpx
from typing import Any, Optional

from ..core.errors import NetworkFailure


async def post_json(
    url: str,
    payload: dict[str, Any],
    headers: Optional[dict] = None,
    timeout: float = 15.0,
    client: Optional[httpx.AsyncClient] = None,
):
    """
    POST `payload` as JSON and return the decoded response body (None when the body is empty
    or not JSON). Transport errors and non-2xx responses are raised as NetworkFailure.
    """
    try:
        if client is not None:
            r = await client.post(url, json=payload, headers=headers, timeout=timeout)
        else:
            async with httpx.AsyncClient(timeout=timeout) as c:
                r = await c.post(url, json=payload, headers=headers)
        r.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise NetworkFailure(url, f"HTTP {e.response.status_code}") from e
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise NetworkFailure(url, f"{type(e).__name__}: {e}") from e

    if not r.content:
        return None
    try:
        return r.json()
    except ValueError:
        return None
