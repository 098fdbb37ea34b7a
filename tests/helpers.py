"""Fake transport and message helpers shared by the relay tests."""

import json


class FakeTransport:
    """Stand-in for a websockets connection that records what it is sent."""

    def __init__(self, fail_with=None):
        self.sent = []
        self.closed_with = None
        self.fail_with = fail_with
        self.remote_address = ("127.0.0.1", 50000)

    async def send(self, text):
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(text)

    async def close(self, code=1000, reason=""):
        self.closed_with = (code, reason)

    @property
    def frames(self):
        return [json.loads(text) for text in self.sent]


def frames(connection):
    """Decoded frames sent to ``connection``."""
    return connection.transport.frames


def hello(identity, msg_type="hello"):
    return json.dumps({"type": msg_type, "id": identity})
