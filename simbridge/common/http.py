"""Bounded httpx clients for outbound calls to external collaborators."""

import httpx


def build_http_client(
    base_url: str,
    api_key: str = "",
    timeout_seconds: float = 15.0,
    connect_timeout_seconds: float = 5.0,
    max_connections: int = 10,
    keepalive_expiry_seconds: float = 30.0,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    """Sync client with a finite pool and explicit timeouts.

    `transport` lets tests plug in `httpx.MockTransport`.
    """

    headers = {"Accept": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return httpx.Client(
        base_url=base_url,
        headers=headers,
        timeout=httpx.Timeout(timeout_seconds, connect=connect_timeout_seconds),
        limits=httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_connections,
            keepalive_expiry=keepalive_expiry_seconds,
        ),
        transport=transport,
    )


def response_body(resp: httpx.Response) -> dict:
    """Decode a response for the ledger snapshot; non-JSON bodies are wrapped."""

    try:
        body = resp.json()
    except ValueError:
        return {"raw": resp.text}
    return body if isinstance(body, dict) else {"raw": body}
