import asyncio
import socket
from contextlib import asynccontextmanager

import pytest

from miniredis.client import Client, Message, ServerError
from miniredis.frame import FrameError
from miniredis.server import run


@asynccontextmanager
async def server_addr():
    sock = socket.create_server(("127.0.0.1", 0))
    stop = asyncio.Event()
    task = asyncio.create_task(run(sock, stop.wait()))
    try:
        yield sock.getsockname()[:2]
    finally:
        stop.set()
        await asyncio.wait_for(task, 5)


@asynccontextmanager
async def connected():
    async with server_addr() as addr, await Client.connect(addr) as client:
        yield client


@asynccontextmanager
async def subscribed(channels):
    async with server_addr() as addr:
        client = await Client.connect(addr)
        async with await client.subscribe(channels) as subscriber:
            yield addr, subscriber


async def publish(addr, channel, *messages):
    async with await Client.connect(addr) as publisher:
        return [await publisher.publish(channel, m) for m in messages]


@asynccontextmanager
async def fake_server(reply):
    async def handle(reader, writer):
        await reader.read(1024)
        if reply:
            writer.write(reply)
            await writer.drain()
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    try:
        yield server.sockets[0].getsockname()[:2]
    finally:
        server.close()
        await server.wait_closed()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "msg, expected", [(None, b"PONG"), (b"hello world", b"hello world")]
)
async def test_ping_pong(msg, expected):
    async with connected() as client:
        assert await client.ping(msg) == expected


@pytest.mark.asyncio
async def test_key_value_get_set():
    async with connected() as client:
        await client.set("hello", b"world")
        assert await client.get("hello") == b"world"


@pytest.mark.asyncio
async def test_connect_with_host_port_string():
    async with server_addr() as (host, port):
        async with await Client.connect(f"{host}:{port}") as client:
            assert await client.get("missing") is None


def test_connect_rejects_address_without_port():
    with pytest.raises(ValueError):
        asyncio.run(Client.connect("localhost"))


@pytest.mark.asyncio
async def test_set_expires_removes_key():
    async with connected() as client:
        await client.set_expires("hello", b"world", 0.05)
        assert await client.get("hello") == b"world"
        await asyncio.sleep(0.3)
        assert await client.get("hello") is None


@pytest.mark.asyncio
async def test_publish_without_subscribers_returns_zero():
    async with connected() as client:
        assert await client.publish("nobody", b"listening") == 0


@pytest.mark.asyncio
async def test_receive_message_subscribed_channel():
    async with subscribed(["hello"]) as (addr, subscriber):
        assert await publish(addr, "hello", b"world") == [1]
        message = await asyncio.wait_for(subscriber.next_message(), 5)
        assert message == Message(channel="hello", content=b"world")


@pytest.mark.asyncio
async def test_iterate_messages():
    async with subscribed(["numbers"]) as (addr, subscriber):
        await publish(addr, "numbers", b"1", b"two")
        received = []
        async for message in subscriber:
            received.append(message.content)
            if len(received) == 2:
                break
        assert received == [b"1", b"two"]


@pytest.mark.asyncio
async def test_subscribe_more_channels():
    async with subscribed(["numbers"]) as (addr, subscriber):
        await subscriber.subscribe(["foo"])
        assert subscriber.subscribed() == ["numbers", "foo"]
        assert await publish(addr, "foo", b"bar") == [1]
        message = await asyncio.wait_for(subscriber.next_message(), 5)
        assert message == Message(channel="foo", content=b"bar")


@pytest.mark.asyncio
@pytest.mark.parametrize("leave, remaining", [(["hello"], ["world"]), ([], [])])
async def test_unsubscribes_from_channels(leave, remaining):
    async with subscribed(["hello", "world"]) as (_, subscriber):
        await subscriber.unsubscribe(leave)
        assert subscriber.subscribed() == remaining


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "reply, error, pattern",
    [
        (b"-ERR boom\r\n", ServerError, "ERR boom"),
        (b":1\r\n", FrameError, "unexpected frame: 1"),
        (b"", ConnectionResetError, "reset by peer"),
    ],
)
async def test_bad_replies_raise(reply, error, pattern):
    async with fake_server(reply) as addr:
        async with await Client.connect(addr) as client:
            with pytest.raises(error, match=pattern):
                await client.get("hello")