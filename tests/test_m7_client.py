from __future__ import annotations

import pytest
import requests

import auto_containers.m7.client as client
from auto_containers.m7.client import MessageClientError, send_message


class Resp:
    def __init__(self, status_code: int, payload, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        return self._payload


def test_send_message_posts_action_and_fields(monkeypatch) -> None:
    seen = {}

    def fake_post(url, json, timeout):
        seen.update(url=url, json=json, timeout=timeout)
        return Resp(200, {"success": True, "isExcluded": True})

    monkeypatch.setattr(client.requests, "post", fake_post)

    out = send_message("http://127.0.0.1:9/", "excludeTab", tabId=4)
    assert out == {"success": True, "isExcluded": True}
    assert seen == {
        "url": "http://127.0.0.1:9/v1/message",
        "json": {"action": "excludeTab", "tabId": 4},
        "timeout": 10,
    }


def test_send_message_errors(monkeypatch) -> None:
    monkeypatch.setattr(client.requests, "post", lambda *a, **k: Resp(500, None, "boom"))
    with pytest.raises(MessageClientError, match="message server error 500: boom"):
        send_message("http://x", "sortRules")

    monkeypatch.setattr(client.requests, "post", lambda *a, **k: Resp(200, [1]))
    with pytest.raises(MessageClientError, match="unexpected response"):
        send_message("http://x", "sortRules")

    def refuse(*a, **k):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(client.requests, "post", refuse)
    with pytest.raises(MessageClientError, match="could not reach"):
        send_message("http://x", "sortRules")
