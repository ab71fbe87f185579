import asyncio

from lambdachat.webrtc.data_channel import DataChannelManager

from tests.fakes import FakeChannel


class Recorder:
    def __init__(self):
        self.opened = []
        self.closed = []
        self.messages = []

    def on_message(self, message, peer_id):
        self.messages.append((peer_id, message))

    def on_open(self, peer_id):
        self.opened.append(peer_id)

    def on_close(self, peer_id):
        self.closed.append(peer_id)


def _add(manager, recorder, peer_id, channel):
    manager.add_channel(peer_id, channel, recorder.on_message, recorder.on_open, recorder.on_close)


def test_broadcast_skips_channels_that_are_not_open():
    manager, recorder = DataChannelManager(), Recorder()
    open_channel = FakeChannel(ready_state="open")
    connecting = FakeChannel()
    closing = FakeChannel(ready_state="closing")
    _add(manager, recorder, 1, open_channel)
    _add(manager, recorder, 2, connecting)
    _add(manager, recorder, 3, closing)

    sent = manager.broadcast_message({"message": "hi", "senderId": 9, "username": "zed"})

    assert sent == 1
    assert open_channel.sent == [{"message": "hi", "senderId": 9, "username": "zed"}]
    assert connecting.sent == []
    assert closing.sent == []
    # skipped channels are not queued for later
    asyncio.run(connecting.open())
    assert connecting.sent == []


def test_already_open_channel_reports_open_immediately():
    manager, recorder = DataChannelManager(), Recorder()
    _add(manager, recorder, 4, FakeChannel(ready_state="open"))
    assert recorder.opened == [4]


def test_open_message_and_close_events():
    manager, recorder = DataChannelManager(), Recorder()
    channel = FakeChannel()
    _add(manager, recorder, 1, channel)

    async def scenario():
        await channel.open()
        await channel.emit("message", '{"message": "hello", "username": "bob"}')
        await channel.close()

    asyncio.run(scenario())

    assert recorder.opened == [1]
    assert recorder.messages == [(1, '{"message": "hello", "username": "bob"}')]
    assert recorder.closed == [1]
    assert manager.get_channel_count() == 0


def test_remove_is_idempotent_and_silences_stale_channel():
    manager, recorder = DataChannelManager(), Recorder()
    channel = FakeChannel(ready_state="open")
    _add(manager, recorder, 1, channel)

    assert manager.remove_channel(1)
    assert not manager.remove_channel(1)

    asyncio.run(channel.close())
    assert recorder.closed == []


def test_removal_during_broadcast_does_not_disturb_iteration():
    manager, recorder = DataChannelManager(), Recorder()
    first = FakeChannel(ready_state="open")
    second = FakeChannel(ready_state="open")
    third = FakeChannel(ready_state="open")
    _add(manager, recorder, 1, first)
    _add(manager, recorder, 2, second)
    _add(manager, recorder, 3, third)
    first.on_send = lambda: manager.remove_channel(2)

    sent = manager.broadcast_message({"message": "hi", "senderId": None, "username": "zed"})

    assert sent == 2
    assert second.sent == []
    assert len(third.sent) == 1
    assert manager.get_open_peers() == [1, 3]


def test_handler_errors_are_contained():
    manager = DataChannelManager()
    channel = FakeChannel(ready_state="open")

    def explode(message, peer_id):
        raise ValueError("bad frame")

    manager.add_channel(1, channel, explode, lambda peer_id: None, lambda peer_id: None)
    asyncio.run(channel.emit("message", "x"))
    assert manager.is_open(1)
