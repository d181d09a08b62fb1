from __future__ import annotations

from typing import Any

import requests

DEFAULT_BASE_URL = "http://127.0.0.1:5056"


class MessageClientError(RuntimeError):
    pass


def send_message(
    base_url: str,
    action: str,
    *,
    timeout: float = 10,
    **fields: Any,
) -> dict[str, Any]:
    """POST one `{action, ...}` message to a running message server."""
    url = f"{base_url.rstrip('/')}/v1/message"
    payload: dict[str, Any] = {"action": action, **fields}

    try:
        resp = requests.post(url, json=payload, timeout=timeout)
    except requests.RequestException as e:
        raise MessageClientError(f"could not reach {url}: {e}") from e

    if resp.status_code >= 400:
        raise MessageClientError(f"message server error {resp.status_code}: {resp.text}")

    data = resp.json()
    if not isinstance(data, dict):
        raise MessageClientError("unexpected response")
    return data
