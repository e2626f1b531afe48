"""An in-memory asyncio key-value and pub/sub server with clients, speaking a subset of RESP."""

__version__ = "0.1.0"