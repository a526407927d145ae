"""Tests for the shutdown sequence in main."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from main import shutdown


class LoginFailure(Exception):
    pass


def _stores():
    return [MagicMock(), MagicMock(), MagicMock()]


@pytest.mark.asyncio
async def test_stores_close_when_discord_task_already_failed():
    async def bad_login():
        raise LoginFailure("Improper token has been passed.")

    discord_task = asyncio.create_task(bad_login())
    await asyncio.sleep(0)

    async def telegram_run():
        return None

    telegram_task = asyncio.create_task(telegram_run())
    telegram_transport = MagicMock()
    telegram_transport.stop = AsyncMock()
    session = MagicMock()
    stores = _stores()

    await shutdown(
        session,
        stores,
        telegram_transport=telegram_transport,
        telegram_task=telegram_task,
        discord_task=discord_task,
    )

    session.cancel.assert_called_once()
    telegram_transport.stop.assert_awaited_once()
    assert telegram_task.done()
    for store in stores:
        store.close.assert_called_once()


@pytest.mark.asyncio
async def test_running_discord_task_is_cancelled():
    discord_task = asyncio.create_task(asyncio.sleep(3600))
    stores = _stores()
    await shutdown(MagicMock(), stores, discord_task=discord_task)
    assert discord_task.cancelled()
    for store in stores:
        store.close.assert_called_once()


@pytest.mark.asyncio
async def test_stores_close_even_if_transport_stop_raises():
    telegram_transport = MagicMock()
    telegram_transport.stop = AsyncMock(side_effect=RuntimeError("already stopped"))
    stores = _stores()
    with pytest.raises(RuntimeError):
        await shutdown(MagicMock(), stores, telegram_transport=telegram_transport)
    for store in stores:
        store.close.assert_called_once()
