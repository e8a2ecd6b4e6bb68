"""SonioxTransport against an in-memory socket."""
import asyncio
import json

import pytest

from voicetag.errors import TransportFailed
from voicetag.transport import NoOpTransport, SonioxTransport, create_transport
from voicetag.transport import soniox


class _FakeSocket:
    def __init__(self, messages=(), hold_open: bool = False) -> None:
        self.sent: list = []
        self.closed = False
        self._messages = list(messages)
        self._release = asyncio.Event()
        if not hold_open:
            self._release.set()

    async def send(self, data) -> None:
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True
        self._release.set()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self._messages:
            yield message
        await self._release.wait()


def _install(monkeypatch, sock: _FakeSocket) -> list[str]:
    urls: list[str] = []

    async def fake_connect(url):
        urls.append(url)
        return sock

    monkeypatch.setattr(soniox.websockets, "connect", fake_connect)
    return urls


def test_config_message(monkeypatch):
    monkeypatch.setenv("SONIOX_LANGUAGE_HINTS", "en, de")
    transport = SonioxTransport(api_key="k", context="")

    config = transport.build_config()

    assert config["api_key"] == "k"
    assert config["model"] == "stt-rt-preview"
    assert config["language_hints"] == ["en", "de"]
    assert config["enable_speaker_diarization"] is True
    assert config["enable_endpoint_detection"] is True
    assert (config["audio_format"], config["sample_rate"], config["num_channels"]) == ("pcm_f32le", 16000, 1)
    assert "context" not in config


@pytest.mark.asyncio
async def test_missing_api_key_fails_to_connect():
    with pytest.raises(TransportFailed):
        await SonioxTransport(api_key="").connect()


@pytest.mark.asyncio
async def test_stream_round_trip(monkeypatch):
    sock = _FakeSocket(
        [
            json.dumps({"tokens": [{"text": "Hi", "is_final": True, "speaker": 1, "start_ms": 0, "end_ms": 200}]}),
            json.dumps({"error_code": 503, "error_message": "busy"}),
            json.dumps({"tokens": [{"text": "<end>", "is_final": True}], "finished": True}),
            json.dumps({"tokens": [{"text": "late", "is_final": True}]}),
        ]
    )
    urls = _install(monkeypatch, sock)
    transport = SonioxTransport(api_key="secret", url="wss://example.test/ws", context="meeting")

    await transport.connect()
    await transport.send_audio(b"\x00\x00\x80\x3f")
    await transport.finalize()
    await transport.send_audio(b"ignored")
    batches = [b async for b in transport.batches()]
    await transport.close()

    assert urls == ["wss://example.test/ws"]
    assert json.loads(sock.sent[0])["context"] == "meeting"
    assert sock.sent[1:] == [b"\x00\x00\x80\x3f", b""]
    assert [t.text for t in batches[0].finals] == ["Hi"]
    assert batches[1].finished and batches[1].finals[0].is_endpoint
    assert len(batches) == 2
    assert sock.closed


@pytest.mark.asyncio
async def test_keepalive_sent_while_no_audio(monkeypatch):
    sock = _FakeSocket(hold_open=True)
    _install(monkeypatch, sock)
    transport = SonioxTransport(api_key="secret", keepalive_sec=0.02)

    await transport.connect()
    await asyncio.sleep(0.1)
    await transport.close()

    assert json.dumps({"type": "keepalive"}) in sock.sent


def test_factory_follows_backend_setting(monkeypatch):
    assert isinstance(create_transport(), NoOpTransport)
    monkeypatch.setenv("TRANSCRIPTION_BACKEND", "soniox")
    assert isinstance(create_transport(), SonioxTransport)
