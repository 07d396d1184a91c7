import asyncio

from notify import ConnectionManager


class FakeSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def accept(self):
        pass

    async def send_text(self, text):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(text)


def test_ref_filter():
    async def scenario():
        mgr = ConnectionManager()
        everything, one_terminal = FakeSocket(), FakeSocket()
        await mgr.connect(everything)
        await mgr.connect(one_terminal, "abc")
        await mgr.broadcast({"stage": "TERMINAL_STEP", "ref": "abc"})
        await mgr.broadcast({"stage": "TERMINAL_STEP", "ref": "xyz"})
        return everything, one_terminal

    everything, one_terminal = asyncio.run(scenario())
    assert len(everything.sent) == 2
    assert one_terminal.sent == ['{"stage": "TERMINAL_STEP", "ref": "abc"}']


def test_closed_socket_is_dropped():
    async def scenario():
        mgr = ConnectionManager()
        await mgr.connect(FakeSocket(fail=True))
        await mgr.broadcast({"ref": "form"})
        return mgr

    assert asyncio.run(scenario()).listeners == {}
