import asyncio

import requests

from services.honeypot_service import HoneypotService
from tests.fakes import TOKEN


class _FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload or {}

    def json(self):
        return self._payload


def test_healthy_token_passes(chain):
    assert asyncio.run(HoneypotService(chain).check_token(TOKEN)) == []


def test_zero_supply_and_missing_code_are_flagged(chain):
    chain.supply = 0
    chain.code = b""

    reasons = asyncio.run(HoneypotService(chain).check_token(TOKEN))

    assert "Total supply is zero" in reasons
    assert "No contract code at address" in reasons


def test_unreadable_metadata_is_flagged(chain):
    chain.info_error = RuntimeError("revert")
    assert "Cannot read token information" in asyncio.run(HoneypotService(chain).check_token(TOKEN))


def test_goplus_honeypot_flag(chain, monkeypatch):
    payload = {"result": {TOKEN.lower(): {"is_honeypot": "1"}}}
    monkeypatch.setattr(requests, "get", lambda *a, **kw: _FakeResponse(200, payload))

    reasons = asyncio.run(HoneypotService(chain, use_goplus=True).check_token(TOKEN))

    assert reasons == ["GoPlus: is_honeypot=1"]


def test_goplus_unreachable_is_not_a_rejection(chain, monkeypatch):
    def down(*args, **kwargs):
        raise requests.ConnectionError("dns")

    monkeypatch.setattr(requests, "get", down)

    assert asyncio.run(HoneypotService(chain, use_goplus=True).check_token(TOKEN)) == []
