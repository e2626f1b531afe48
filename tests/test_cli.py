import asyncio
import socket
import threading
import time

import pytest

from miniredis.blocking_client import BlockingClient
from miniredis.cli import client_main
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


def test_demo_client(server_addr, capsys):
    assert client_main(["--addr", server_addr]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines[1] == "ping b'ping'"


def test_hello_world_sets_value(server_addr, capsys):
    assert client_main(["--addr", server_addr, "hello-world"]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert len(lines) == 2
    with BlockingClient.connect(server_addr) as client:
        assert client.get("hello") == b"world"


def test_ping_client(server_addr, capsys):
    assert client_main(["--addr", server_addr, "ping"]) == 0
    assert capsys.readouterr().out.strip().endswith("b'ping'")


@pytest.mark.parametrize("command", ["blocking", "buffered"])
def test_set_get_examples(server_addr, capsys, command):
    assert client_main(["--addr", server_addr, command]) == 0
    out = capsys.readouterr().out
    assert "got value from the server; success=True" in out
    with BlockingClient.connect(server_addr) as client:
        assert client.get("hello") == b"world"


def test_publish_reaches_subscriber(server_addr):
    subscriber = BlockingClient.connect(server_addr).subscribe(["numbers", "foo"])
    with subscriber:
        assert client_main(["--addr", server_addr, "publish"]) == 0
        messages = [subscriber.next_message() for _ in range(7)]
    assert [m.content for m in messages] == [
        b"1", b"two", b"3", b"four", b"five", b"6", b"bar"
    ]
    assert [m.channel for m in messages] == ["numbers"] * 6 + ["foo"]


def test_subscribe_prints_messages(server_addr, capsys):
    result = []
    thread = threading.Thread(
        target=lambda: result.append(
            client_main(["--addr", server_addr, "subscribe", "--count", "1"])
        )
    )
    thread.start()
    with BlockingClient.connect(server_addr) as publisher:
        deadline = time.monotonic() + 10
        while publisher.publish("foo", "bar") == 0 and time.monotonic() < deadline:
            time.sleep(0.02)
    thread.join(10)
    assert not thread.is_alive()
    assert result == [0]
    assert "subscribe got foo, b'bar'" in capsys.readouterr().out


def test_unreachable_server_fails():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    host, port = sock.getsockname()
    sock.close()
    assert client_main(["--addr", f"{host}:{port}", "ping"]) == 1


def test_invalid_address_fails(capsys):
    assert client_main(["--addr", "nowhere", "ping"]) == 1
    assert "invalid address" in capsys.readouterr().err