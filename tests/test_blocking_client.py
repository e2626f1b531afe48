import asyncio
import socket
import threading

import pytest

from miniredis.blocking_client import BlockingClient
from miniredis.client import Message
from miniredis.server import run


@pytest.fixture
def server_addr():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen()
    host, port = sock.getsockname()
    loop = asyncio.new_event_loop()
    ready = threading.Event()
    holder = {}

    async def main():
        holder["stop"] = asyncio.Event()
        ready.set()
        await run(sock, holder["stop"].wait())

    thread = threading.Thread(target=loop.run_until_complete, args=(main(),))
    thread.start()
    ready.wait(5)
    try:
        yield f"{host}:{port}"
    finally:
        loop.call_soon_threadsafe(holder["stop"].set)
        thread.join(10)
        loop.close()


def test_get_missing_key_is_none(server_addr):
    with BlockingClient.connect(server_addr) as client:
        assert client.get("hello") is None


def test_set_then_get(server_addr):
    with BlockingClient.connect(server_addr) as client:
        client.set("hello", b"world")
        assert client.get("hello") == b"world"


def test_set_accepts_text(server_addr):
    with BlockingClient.connect(server_addr) as client:
        client.set("hello", "world")
        assert client.get("hello") == b"world"


def test_publish_without_subscribers(server_addr):
    with BlockingClient.connect(server_addr) as client:
        assert client.publish("hello", b"world") == 0


def test_subscriber_receives_message(server_addr):
    subscriber = BlockingClient.connect(server_addr).subscribe(["hello"])
    with subscriber, BlockingClient.connect(server_addr) as publisher:
        assert subscriber.subscribed() == ["hello"]
        assert publisher.publish("hello", "world") == 1
        assert subscriber.next_message() == Message("hello", b"world")


def test_subscriber_iteration_and_more_channels(server_addr):
    subscriber = BlockingClient.connect(server_addr).subscribe(["numbers"])
    with subscriber, BlockingClient.connect(server_addr) as publisher:
        subscriber.subscribe(["foo"])
        assert subscriber.subscribed() == ["numbers", "foo"]
        publisher.publish("numbers", "1")
        publisher.publish("foo", "bar")
        received = []
        for message in subscriber:
            received.append(message)
            if len(received) == 2:
                break
        assert received == [Message("numbers", b"1"), Message("foo", b"bar")]


def test_client_is_consumed_by_subscribe(server_addr):
    client = BlockingClient.connect(server_addr)
    subscriber = client.subscribe(["hello"])
    with subscriber:
        with pytest.raises(RuntimeError):
            client.get("hello")


def test_closed_client_raises(server_addr):
    client = BlockingClient.connect(server_addr)
    client.close()
    with pytest.raises(RuntimeError):
        client.set("hello", b"world")


def test_connect_refused():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    host, port = sock.getsockname()
    sock.close()
    with pytest.raises(OSError):
        BlockingClient.connect((host, port))