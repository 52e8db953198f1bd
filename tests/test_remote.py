from __future__ import annotations

import asyncio
import threading
import time

import pytest

from vton_proxy.app.errors import UpstreamAuthError, UpstreamQuotaError, UpstreamUnavailableError
from vton_proxy.app.remote import RemoteClientProvider


class CountingFactory:
    def __init__(self, error: Exception = None, delay: float = 0.05):
        self.error = error
        self.delay = delay
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self, space_id, token):
        with self._lock:
            self.calls += 1
        time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return object()


def test_concurrent_first_callers_share_one_connection():
    factory = CountingFactory()
    remote = RemoteClientProvider(space_id="owner/space", token="hf_x", factory=factory)

    async def scenario():
        return await asyncio.gather(*(remote.get() for _ in range(8)))

    handles = asyncio.run(scenario())
    assert factory.calls == 1
    assert all(handle is handles[0] for handle in handles)
    assert remote.connected


def test_cached_handle_is_reused():
    factory = CountingFactory(delay=0)
    remote = RemoteClientProvider(space_id="owner/space", token="hf_x", factory=factory)

    async def scenario():
        first = await remote.get()
        second = await remote.get()
        return first, second

    first, second = asyncio.run(scenario())
    assert first is second
    assert factory.calls == 1


def test_concurrent_callers_share_the_failure_then_retry():
    factory = CountingFactory(error=ConnectionRefusedError("Connection refused"))
    remote = RemoteClientProvider(space_id="owner/space", token="hf_x", factory=factory)

    async def scenario():
        return await asyncio.gather(*(remote.get() for _ in range(5)), return_exceptions=True)

    outcomes = asyncio.run(scenario())
    assert factory.calls == 1
    assert all(isinstance(outcome, UpstreamUnavailableError) for outcome in outcomes)
    assert all(outcome is outcomes[0] for outcome in outcomes)
    assert str(outcomes[0]).startswith("AI service connection failed")
    assert not remote.connected

    factory.error = None
    handle = asyncio.run(remote.get())
    assert handle is not None
    assert factory.calls == 2


def test_connection_failure_keeps_quota_classification():
    factory = CountingFactory(error=RuntimeError("Space is sleeping: ZeroGPU quota exhausted"), delay=0)
    remote = RemoteClientProvider(space_id="owner/space", token="hf_x", factory=factory)
    with pytest.raises(UpstreamQuotaError):
        asyncio.run(remote.get())


def test_required_token_fails_without_connecting():
    factory = CountingFactory(delay=0)
    remote = RemoteClientProvider(space_id="owner/space", token=None, require_token=True, factory=factory)
    with pytest.raises(UpstreamAuthError):
        asyncio.run(remote.get())
    assert factory.calls == 0
    assert not remote.token_configured


def test_check_reports_failure_without_raising():
    remote = RemoteClientProvider(
        space_id="owner/space",
        token="hf_x",
        factory=CountingFactory(error=OSError("Name or service not known"), delay=0),
    )
    assert asyncio.run(remote.check()) is False


def test_token_is_passed_to_factory():
    seen = {}

    def factory(space_id, token):
        seen.update(space_id=space_id, token=token)
        return object()

    remote = RemoteClientProvider(space_id="owner/space", token="hf_secret", factory=factory)
    asyncio.run(remote.get())
    assert seen == {"space_id": "owner/space", "token": "hf_secret"}
