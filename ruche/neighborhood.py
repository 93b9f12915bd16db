from __future__ import annotations

import httpx

from .errors import UpstreamFailure


def fetch_neighborhood(url: str, timeout_s: float = 10.0, transport: httpx.BaseTransport | None = None) -> str:
    """Ask the suggestion service which neighborhood a new node should target.

    Expected JSON: {"neighborhood": "<bits>"}.
    Any non-2xx status, invalid JSON or a missing/non-string field is an
    UpstreamFailure.
    """
    try:
        with httpx.Client(timeout=timeout_s, follow_redirects=False, transport=transport) as client:
            resp = client.get(url)
        resp.raise_for_status()
        data = resp.json()
    except httpx.HTTPError as e:
        raise UpstreamFailure("neighborhood", f"{type(e).__name__}: {e}") from e
    except ValueError as e:
        raise UpstreamFailure("neighborhood", "Invalid JSON") from e

    if not isinstance(data, dict) or "neighborhood" not in data:
        raise UpstreamFailure("neighborhood", "Missing 'neighborhood' field")
    neighborhood = data["neighborhood"]
    if not isinstance(neighborhood, str):
        raise UpstreamFailure("neighborhood", "Invalid 'neighborhood' field")
    return neighborhood


class NeighborhoodLookup:
    """Callable bound to the configured suggestion URL."""

    def __init__(self, url: str, timeout_s: float = 10.0, transport: httpx.BaseTransport | None = None):
        self.url = url
        self.timeout_s = timeout_s
        self.transport = transport

    def __call__(self) -> str:
        return fetch_neighborhood(self.url, self.timeout_s, self.transport)
