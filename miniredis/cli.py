"""Command-line entry points: the server and a few demonstration clients."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import socket
import sys

from miniredis.blocking_client import BlockingClient
from miniredis.buffered_client import BufferedClient
from miniredis.client import Client, ServerError
from miniredis.frame import FrameError
from miniredis.server import run

SERVER_ADDR = "127.0.0.1:6379"

_NUMBERS = ["1", "two", "3", "four", "five", "6"]


def _split_addr(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep or not host:
        raise ValueError(f"invalid address: {addr!r}")
    return host, int(port)


async def _serve(host: str, port: int) -> None:
    sock = socket.create_server((host, port))
    print("listening", flush=True)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, stop.set)
    except (NotImplementedError, RuntimeError):
        pass
    await run(sock, stop.wait())


def server_main(argv: list[str] | None = None) -> int:
    """Run the server until interrupted."""
    parser = argparse.ArgumentParser(prog="miniredis-server")
    parser.add_argument("--addr", default=SERVER_ADDR, help="address to listen on")
    parser.add_argument("-v", "--verbose", action="store_true", help="log debug output")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    try:
        host, port = _split_addr(args.addr)
        asyncio.run(_serve(host, port))
    except KeyboardInterrupt:
        pass
    except (OSError, ValueError) as err:
        print(f"error: {err}", file=sys.stderr)
        return 1
    return 0


async def _demo(addr: str) -> None:
    async with await Client.connect(addr) as client:
        print(f"get {await client.get('hello')!r}")
        print(f"ping {await client.ping(b'ping')!r}")


async def _hello_world(addr: str) -> None:
    async with await Client.connect(addr) as client:
        print(f"get {await client.get('hello')!r}")
        await client.set("hello", b"world")
        print(f"get {await client.get('hello')!r}")


async def _ping(addr: str) -> None:
    async with await Client.connect(addr) as client:
        print(f"ping {await client.ping(b'ping')!r}")


async def _publish(addr: str) -> None:
    async with await Client.connect(addr) as client:
        for number in _NUMBERS:
            await client.publish("numbers", number)
        await client.publish("foo", "bar")


async def _subscribe(addr: str, count: int | None) -> None:
    client = await Client.connect(addr)
    async with await client.subscribe(["numbers"]) as subscriber:
        await subscriber.subscribe(["foo"])
        received = 0
        while count is None or received < count:
            message = await subscriber.next_message()
            if message is None:
                break
            print(f"subscribe got {message.channel}, {message.content!r}", flush=True)
            received += 1


async def _subscribe_stream(addr: str, count: int | None) -> None:
    client = await Client.connect(addr)
    async with await client.subscribe(["numbers"]) as subscriber:
        received = 0
        async for message in subscriber:
            print(f"GOT = {message!r}", flush=True)
            received += 1
            if count is not None and received >= count:
                break


async def _buffered(addr: str) -> None:
    async with BufferedClient.buffer(await Client.connect(addr)) as buffered:
        await buffered.set("hello", b"world")
        result = await buffered.get("hello")
        print(f"got value from the server; success={result is not None}")


def _blocking(addr: str) -> None:
    with BlockingClient.connect(addr) as client:
        client.set("hello", b"world")
        result = client.get("hello")
        print(f"got value from the server; success={result is not None}")


def client_main(argv: list[str] | None = None) -> int:
    """Run one of the demonstration clients against a server."""
    parser = argparse.ArgumentParser(prog="miniredis-client")
    parser.add_argument("--addr", default=SERVER_ADDR, help="server address")
    commands = parser.add_subparsers(dest="command")
    commands.add_parser("demo", help="get 'hello' and ping (default)")
    commands.add_parser("hello-world", help="get, set and get 'hello'")
    commands.add_parser("ping", help="ping the server")
    commands.add_parser("publish", help="publish sample messages")
    for name in ("subscribe", "subscribe-stream"):
        sub = commands.add_parser(name, help="print messages from subscribed channels")
        sub.add_argument("--count", type=int, default=None, help="stop after this many")
    commands.add_parser("blocking", help="set and get with the blocking client")
    commands.add_parser("buffered", help="set and get with the buffered client")
    args = parser.parse_args(argv)

    try:
        match args.command:
            case None | "demo":
                asyncio.run(_demo(args.addr))
            case "hello-world":
                asyncio.run(_hello_world(args.addr))
            case "ping":
                asyncio.run(_ping(args.addr))
            case "publish":
                asyncio.run(_publish(args.addr))
            case "subscribe":
                asyncio.run(_subscribe(args.addr, args.count))
            case "subscribe-stream":
                asyncio.run(_subscribe_stream(args.addr, args.count))
            case "blocking":
                _blocking(args.addr)
            case "buffered":
                asyncio.run(_buffered(args.addr))
    except (OSError, ServerError, FrameError, ValueError) as err:
        print(f"error: {err}", file=sys.stderr)
        return 1
    return 0