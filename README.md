# miniredis

A small in-memory key-value server and client that speak a subset of the
Redis serialization protocol (RESP), built on `asyncio`.

The server supports these commands:

- `GET key`
- `SET key value [EX seconds | PX milliseconds]` — keys with an expiry are
  removed by a background task once their time has passed
- `PUBLISH channel message` — replies with the number of subscribers reached
- `SUBSCRIBE channel [channel ...]` and, while subscribed, `UNSUBSCRIBE [channel ...]`
  (with no channels it leaves every channel)
- `PING [message]` — replies with the message, or `PONG` when none is given

Command names are case-insensitive. Any other command is answered with
`-ERR unknown command <name>`. At most 250 clients are served at once;
further connections wait for a free slot.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Running the server

```
miniredis-server
```

Options:

- `--addr HOST:PORT` — address to listen on (default `127.0.0.1:6379`)
- `-v`, `--verbose` — log debug output

On Ctrl-C the server stops accepting connections, tells every open connection
to stop, and exits once their handlers have finished.

## Trying it from the command line

With the server running:

```
miniredis-client
```

This reads the key `hello` and sends a `PING`, printing both replies.
`miniredis-client` takes `--addr HOST:PORT` before the sub-command, and these
sub-commands:

- `demo` — get `hello` and ping (the default)
- `hello-world` — get `hello`, set it to `world`, get it again
- `ping` — ping the server
- `publish` — publish sample messages on the channels `numbers` and `foo`
- `subscribe [--count N]` — subscribe to `numbers` and `foo` and print messages
- `subscribe-stream [--count N]` — subscribe to `numbers` and print messages
- `blocking` — set and get `hello` with the blocking client
- `buffered` — set and get `hello` with the buffered client

## Using the client library

The asynchronous client lives in `miniredis.client`:

```python
import asyncio

from miniredis.client import Client


async def main():
    async with await Client.connect("127.0.0.1:6379") as client:
        await client.set("hello", b"world")
        print(await client.get("hello"))          # b'world'
        print(await client.ping())                # b'PONG'
        await client.set_expires("session", b"data", 1.5)   # seconds
        await client.publish("numbers", b"1")     # number of subscribers reached


asyncio.run(main())
```

`Client.connect` accepts `"host:port"` or a `(host, port)` pair. Values may be
given as `bytes` or `str`.

A client can be turned into a `Subscriber`, after which it only receives
messages:

```python
subscriber = await client.subscribe(["numbers"])
await subscriber.subscribe(["foo"])
async for message in subscriber:
    print(message.channel, message.content)
```

`Subscriber.next_message()` returns the next `Message` (with `channel` and
`content`), or `None` when the server closed the connection.
`Subscriber.unsubscribe` with a list of channels leaves those channels; with no
channels it leaves all of them. `Subscriber.subscribed()` returns the channels
currently subscribed to.

Replies that the server sends as errors are raised as
`miniredis.client.ServerError`; a connection closed by the server raises
`ConnectionResetError`.

### Blocking client

For code without an event loop, `miniredis.blocking_client.BlockingClient`
offers `get`, `set`, `publish` and `subscribe` as plain method calls, running
the asynchronous client on a private event loop:

```python
from miniredis.blocking_client import BlockingClient

with BlockingClient.connect("127.0.0.1:6379") as client:
    client.set("hello", b"world")
    print(client.get("hello"))
```

`BlockingClient.subscribe` returns a `BlockingSubscriber` (the client itself
can no longer be used); it has `next_message`, `subscribe`, `subscribed` and
`close`, and can be iterated over to receive messages.

### Buffered client

`miniredis.buffered_client.BufferedClient.buffer(client)` wraps a `Client` so
that `get` and `set` requests from several tasks are queued and sent over the
one connection in turn. `close()` finishes the queued requests and closes the
connection.

## Embedding the server

`miniredis.server.run(sock, shutdown)` serves connections on an already bound
listening socket until the awaitable `shutdown` completes, then tells every
connection handler to stop and returns once they have finished.

The protocol pieces are available on their own: `miniredis.frame` holds the
frame types with `encode`, `check` and `parse`, and `miniredis.cmd.from_frame`
decodes a command from a received frame.

## What it does not do

- Data is kept in memory only; nothing is saved to disk.
- Only the commands listed above exist: there is no `DEL`, no key listing and
  no authentication.
- The blocking and buffered clients cover a subset of the asynchronous client:
  the buffered client only offers `get` and `set`.