"""PushService tests — validation order and fan-out, without HTTP."""

import pytest

from pushall.realtime.registry import ChannelRegistry
from pushall.services.push_service import (
    ChannelNotFoundError,
    EmptyMessageError,
    MissingTokenError,
    PushService,
)


@pytest.mark.asyncio
async def test_empty_message_rejected_before_lookup():
    reg = ChannelRegistry()
    svc = PushService(reg)
    with pytest.raises(EmptyMessageError):
        await svc.push(token="abc", msg="   ")
    # The unknown token was never even looked at
    assert len(reg) == 0


@pytest.mark.asyncio
async def test_blank_token_rejected():
    svc = PushService(ChannelRegistry())
    with pytest.raises(MissingTokenError):
        await svc.push(token=" ", msg="hello")


@pytest.mark.asyncio
async def test_unknown_token_not_found_and_not_created():
    reg = ChannelRegistry()
    svc = PushService(reg)
    with pytest.raises(ChannelNotFoundError) as exc_info:
        await svc.push(token="xyz", msg="hello")
    assert exc_info.value.token == "xyz"
    assert "xyz" not in reg


@pytest.mark.asyncio
async def test_push_counts_receivers():
    reg = ChannelRegistry()
    channel = await reg.get_or_create("abc")
    svc = PushService(reg)

    assert await svc.push(token="abc", msg="nobody") == 0

    with channel.subscribe() as a, channel.subscribe() as b:
        assert await svc.push(token="abc", msg="both", level="info") == 2
        assert await a.recv() == await b.recv()


@pytest.mark.asyncio
async def test_message_is_not_trimmed():
    reg = ChannelRegistry()
    channel = await reg.get_or_create("abc")
    with channel.subscribe() as sub:
        await PushService(reg).push(token="abc", msg="  padded  ")
        assert '"msg":"  padded  "' in await sub.recv()
