import queue

from sointupy.audio import AudioBuffer
from sointupy.broker import Broker, MsgToDetector, MsgToModel, try_send


def test_try_send_succeeds_until_full():
    channel = queue.Queue(maxsize=1)
    assert try_send(channel, "a") is True
    assert try_send(channel, "b") is False
    assert channel.get_nowait() == "a"


def test_broker_queues_hold_1024_messages():
    broker = Broker()
    for i in range(1024):
        assert try_send(broker.to_player, i)
    assert try_send(broker.to_player, "overflow") is False
    assert broker.to_player.qsize() == 1024


def test_get_audio_buffer_from_empty_pool_is_empty():
    broker = Broker()
    assert len(broker.get_audio_buffer()) == 0


def test_put_audio_buffer_empties_and_reuses():
    broker = Broker()
    buf = AudioBuffer(10)
    broker.put_audio_buffer(buf)
    assert len(buf) == 0
    assert broker.get_audio_buffer() is buf
    assert len(broker.get_audio_buffer()) == 0


def test_messages_travel_through_queues():
    broker = Broker()
    assert try_send(broker.to_model, MsgToModel(reset=True, trigger_channel=2))
    assert try_send(broker.to_detector, MsgToDetector(quit=True))
    model_msg = broker.to_model.get_nowait()
    assert model_msg.reset and model_msg.trigger_channel == 2
    assert broker.to_detector.get_nowait().quit is True