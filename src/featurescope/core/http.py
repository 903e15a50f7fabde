"""
HTTP helpers.

This module centralizes the minimal HTTP client logic used by the feature-service clients.

Design goals:
- Small surface area (GET JSON).
- Deterministic defaults (timeout + User-Agent).
- Raise on non-2xx so callers can decide how to fail (the resolver isolates failures per source).
"""

from __future__ import annotations

from typing import Any

import httpx


DEFAULT_USER_AGENT = "featurescope/0.1.0 (+https://local)"


def _looks_like_html(text: str) -> bool:
    head = text.lstrip()[:15].lower()
    return head.startswith("<html") or head.startswith("<!doctype")


def get_json(
    url: str,
    *,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    timeout_seconds: float = 20,
    client: httpx.Client | None = None,
) -> Any:
    """GET `url` and return the decoded JSON response.

    A shared `client` can be passed to reuse connections (and to inject a mock transport in tests);
    otherwise a short-lived client is created for this request.

    Raises:
        httpx.HTTPError: On transport errors or non-2xx status codes.
        ValueError: If the response body is not valid JSON (including HTML error pages).
    """
    request_headers = {"User-Agent": DEFAULT_USER_AGENT, "Accept": "application/json"}
    if headers:
        request_headers.update(headers)

    if client is not None:
        resp = client.get(url, params=params, headers=request_headers, timeout=timeout_seconds)
        return _decode(resp)

    with httpx.Client(timeout=timeout_seconds) as owned:
        resp = owned.get(url, params=params, headers=request_headers)
        return _decode(resp)


def _decode(resp: httpx.Response) -> Any:
    resp.raise_for_status()
    # Some ArcGIS front-ends answer with an HTML error page and a 200 status.
    if _looks_like_html(resp.text):
        raise ValueError(f"Expected JSON from {resp.request.url}, received HTML.")
    return resp.json()
