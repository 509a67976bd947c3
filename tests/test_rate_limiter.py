"""Unit tests for the attempt-write rate limiter."""

from unittest.mock import MagicMock

import redis
from starlette.requests import Request

from exam_engine.config import settings
from exam_engine.core.security import create_access_token
from exam_engine.services import rate_limiter


def _request(headers: dict | None = None, client_host: str = "10.0.0.5") -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "headers": raw, "client": (client_host, 1234)})


class TestClientKey:
    def test_keyed_by_token_subject(self):
        token = create_access_token({"sub": "student-9"})
        key = rate_limiter._client_key(_request({"Authorization": f"Bearer {token}"}))
        assert key == "rl:attempt:s:student-9"

    def test_falls_back_to_forwarded_ip(self):
        key = rate_limiter._client_key(_request({"X-Forwarded-For": "1.2.3.4, 10.0.0.1"}))
        assert key == "rl:attempt:ip:1.2.3.4"

    def test_falls_back_to_client_ip(self):
        key = rate_limiter._client_key(_request({"Authorization": "Bearer junk"}))
        assert key == "rl:attempt:ip:10.0.0.5"


class TestCheck:
    def test_disabled_when_rpm_zero(self, monkeypatch):
        get_redis = MagicMock()
        monkeypatch.setattr(rate_limiter, "_get_redis", get_redis)
        assert rate_limiter.check("k") is True
        get_redis.assert_not_called()

    def test_fails_open_when_redis_down(self, monkeypatch):
        monkeypatch.setattr(settings, "RATE_LIMIT_ATTEMPT_RPM", 60)
        client = MagicMock()
        client.eval.side_effect = redis.ConnectionError("refused")
        monkeypatch.setattr(rate_limiter, "_get_redis", lambda: client)
        assert rate_limiter.check("k") is True

    def test_rejects_when_bucket_empty(self, monkeypatch):
        monkeypatch.setattr(settings, "RATE_LIMIT_ATTEMPT_RPM", 60)
        client = MagicMock()
        client.eval.return_value = 0
        monkeypatch.setattr(rate_limiter, "_get_redis", lambda: client)
        assert rate_limiter.check("k") is False
        args = client.eval.call_args.args
        assert args[2] == "k"
        assert args[3] == settings.RATE_LIMIT_ATTEMPT_BURST
