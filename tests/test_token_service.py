import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from obs_queue.core.errors import MissingTokenError, TwitchAPIError, UnauthorizedError
from obs_queue.services.token_service import TokenService
from obs_queue.services.twitch_api import HelixUser
from obs_queue.shared.models.auth import Broadcaster, Token

from .conftest import FakeAppStateRepository


def token(expires_in: timedelta, access: str = "old") -> Token:
    return Token(
        access_token=access,
        refresh_token=f"{access}-refresh",
        expires_at=datetime.now(UTC) + expires_in,
    )


@pytest.fixture
def twitch():
    mock = AsyncMock()
    mock.refresh_token.return_value = token(timedelta(hours=4), access="new")
    mock.get_self.return_value = HelixUser(
        id="b1", login="caster", display_name="Caster", profile_image_url=""
    )
    return mock


async def test_missing_token_raises():
    service = TokenService(FakeAppStateRepository(), AsyncMock())

    with pytest.raises(MissingTokenError):
        await service.get_valid_token()


async def test_fresh_token_is_returned_as_is(twitch):
    repo = FakeAppStateRepository(token(timedelta(hours=1)))
    service = TokenService(repo, twitch)

    result = await service.get_valid_token()

    assert result.access_token == "old"
    twitch.refresh_token.assert_not_awaited()


async def test_token_near_expiry_is_refreshed_and_stored(twitch):
    repo = FakeAppStateRepository(token(timedelta(seconds=30)))
    service = TokenService(repo, twitch)

    result = await service.get_valid_token()

    assert result.access_token == "new"
    assert repo.token.access_token == "new"
    twitch.refresh_token.assert_awaited_once_with("old-refresh")


async def test_refresh_failure_is_unauthorized(twitch):
    twitch.refresh_token.side_effect = TwitchAPIError("invalid refresh token", status_code=400)
    repo = FakeAppStateRepository(token(timedelta(seconds=-10)))
    service = TokenService(repo, twitch)

    with pytest.raises(UnauthorizedError):
        await service.get_valid_token()
    assert repo.token.access_token == "old"


async def test_concurrent_callers_share_one_refresh(twitch):
    async def slow_refresh(refresh_token):
        await asyncio.sleep(0.01)
        return token(timedelta(hours=4), access="new")

    twitch.refresh_token.side_effect = slow_refresh
    repo = FakeAppStateRepository(token(timedelta(seconds=5)))
    service = TokenService(repo, twitch)

    results = await asyncio.gather(*(service.get_valid_token() for _ in range(5)))

    assert {r.access_token for r in results} == {"new"}
    assert twitch.refresh_token.await_count == 1
    assert repo.token_writes == 1


async def test_has_usable_token():
    assert not await TokenService(FakeAppStateRepository(), AsyncMock()).has_usable_token()

    soon = TokenService(FakeAppStateRepository(token(timedelta(seconds=10))), AsyncMock())
    assert not await soon.has_usable_token()

    later = TokenService(FakeAppStateRepository(token(timedelta(minutes=5))), AsyncMock())
    assert await later.has_usable_token()


async def test_logout_removes_token(twitch):
    repo = FakeAppStateRepository(token(timedelta(hours=1)))
    service = TokenService(repo, twitch)

    await service.logout()

    assert repo.token is None
    with pytest.raises(MissingTokenError):
        await service.get_valid_token()


async def test_resolve_broadcaster_uses_stored_identity(twitch):
    repo = FakeAppStateRepository(broadcaster=Broadcaster(id="b0", login="stored"))
    service = TokenService(repo, twitch)

    result = await service.resolve_broadcaster("access")

    assert result == Broadcaster(id="b0", login="stored")
    twitch.get_self.assert_not_awaited()


async def test_resolve_broadcaster_fetches_and_stores_on_miss(twitch):
    repo = FakeAppStateRepository()
    service = TokenService(repo, twitch)

    result = await service.resolve_broadcaster("access")

    assert result == Broadcaster(id="b1", login="caster")
    assert repo.broadcaster == result
    twitch.get_self.assert_awaited_once_with("access")
