"""Access token caching, expiry and single-flight refresh."""

import asyncio
import base64

import httpx
import pytest

from app.core.exceptions import ProviderAuthError
from app.mpesa.token_manager import AccessTokenManager


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _manager(fake_daraja, clock=None, safety_margin=60) -> AccessTokenManager:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(fake_daraja.handler),
        base_url="https://daraja.test",
    )
    kwargs = {"clock": clock} if clock else {}
    return AccessTokenManager(client, "consumer-key", "consumer-secret", safety_margin_seconds=safety_margin, **kwargs)


@pytest.mark.asyncio
async def test_token_is_cached(fake_daraja) -> None:
    manager = _manager(fake_daraja)
    assert await manager.get_token() == "token-1"
    assert await manager.get_token() == "token-1"
    assert fake_daraja.token_calls == 1


@pytest.mark.asyncio
async def test_exchange_uses_basic_auth(fake_daraja) -> None:
    manager = _manager(fake_daraja)
    await manager.get_token()
    expected = base64.b64encode(b"consumer-key:consumer-secret").decode()
    assert fake_daraja.token_auth_headers == [f"Basic {expected}"]


@pytest.mark.asyncio
async def test_token_refreshed_after_expiry_minus_margin(fake_daraja) -> None:
    clock = FakeClock()
    manager = _manager(fake_daraja, clock=clock, safety_margin=60)
    assert await manager.get_token() == "token-1"

    clock.now += 3599 - 61
    assert await manager.get_token() == "token-1"

    clock.now += 2
    assert await manager.get_token() == "token-2"
    assert fake_daraja.token_calls == 2


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_exchange(fake_daraja) -> None:
    fake_daraja.token_delay = 0.05
    manager = _manager(fake_daraja)

    tokens = await asyncio.gather(*(manager.get_token() for _ in range(10)))

    assert set(tokens) == {"token-1"}
    assert fake_daraja.token_calls == 1


@pytest.mark.asyncio
async def test_rejected_credentials_raise_and_cache_nothing(fake_daraja) -> None:
    fake_daraja.token_status = 400
    manager = _manager(fake_daraja)

    with pytest.raises(ProviderAuthError) as exc:
        await manager.get_token()
    # User-facing message never carries provider detail.
    assert "Invalid Authentication" not in exc.value.message
    assert exc.value.status_code == 503

    fake_daraja.token_status = 200
    assert await manager.get_token() == "token-2"
    assert fake_daraja.token_calls == 2


@pytest.mark.asyncio
async def test_concurrent_callers_all_see_the_failure(fake_daraja) -> None:
    fake_daraja.token_delay = 0.05
    fake_daraja.token_status = 500
    manager = _manager(fake_daraja)

    results = await asyncio.gather(*(manager.get_token() for _ in range(5)), return_exceptions=True)

    assert all(isinstance(r, ProviderAuthError) for r in results)
    assert fake_daraja.token_calls == 1


@pytest.mark.asyncio
async def test_network_error_is_auth_error(fake_daraja) -> None:
    fake_daraja.token_exception = httpx.ConnectError("connection refused")
    manager = _manager(fake_daraja)
    with pytest.raises(ProviderAuthError):
        await manager.get_token()


@pytest.mark.asyncio
async def test_invalidate_forces_new_exchange(fake_daraja) -> None:
    manager = _manager(fake_daraja)
    await manager.get_token()
    manager.invalidate()
    assert await manager.get_token() == "token-2"


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_cancel_shared_exchange(fake_daraja) -> None:
    fake_daraja.token_delay = 0.05
    manager = _manager(fake_daraja)

    first = asyncio.ensure_future(manager.get_token())
    second = asyncio.ensure_future(manager.get_token())
    await asyncio.sleep(0.01)
    first.cancel()

    assert await second == "token-1"
    assert fake_daraja.token_calls == 1
