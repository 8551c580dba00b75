"""Tests for the media attachment pipeline and voice recorder."""

import re
from unittest.mock import AsyncMock

import pytest

from spg_chat.client.errors import AttachFailedError, ChatBackendError
from spg_chat.client.media import (
    MediaAttachmentPipeline,
    VoiceNote,
    VoiceRecorder,
    build_media_key,
    format_elapsed,
    media_kind_for,
)
from spg_chat.constants.chat import MediaKind, SenderRole


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def test_media_kind_for():
    assert media_kind_for("image/png") == MediaKind.IMAGE
    assert media_kind_for("video/mp4") == MediaKind.VIDEO
    assert media_kind_for("audio/webm") == MediaKind.AUDIO
    assert media_kind_for(None) == MediaKind.AUDIO


def test_format_elapsed():
    assert format_elapsed(0) == "0:00"
    assert format_elapsed(9.7) == "0:09"
    assert format_elapsed(65) == "1:05"
    assert format_elapsed(-3) == "0:00"


def test_build_media_key():
    customer = build_media_key("SPG-AB12C", "jpg", now_ms=1700000000000)
    staff = build_media_key("SPG-AB12C", "jpg", role=SenderRole.STAFF, now_ms=1700000000000)
    assert re.match(r"^SPG-AB12C/1700000000000-[0-9a-f]{8}\.jpg$", customer)
    assert re.match(r"^SPG-AB12C/staff-1700000000000-[0-9a-f]{8}\.jpg$", staff)


@pytest.mark.asyncio
async def test_attach_uploads_and_returns_reference(local_backend, storage):
    pipeline = MediaAttachmentPipeline(local_backend)
    ref = await pipeline.attach("SPG-AB12C", b"\x89PNG", filename="tile.PNG")

    assert ref.kind == MediaKind.IMAGE
    assert ref.key.startswith("SPG-AB12C/")
    assert ref.key.endswith(".png")
    assert ref.url == f"https://cdn.test/chat-media/{ref.key}"
    assert storage.get(ref.key).content_type == "image/png"


@pytest.mark.asyncio
async def test_attach_explicit_kind_wins(local_backend):
    pipeline = MediaAttachmentPipeline(local_backend, role=SenderRole.STAFF)
    ref = await pipeline.attach(
        "SPG-AB12C", b"data", kind=MediaKind.VIDEO, content_type="application/octet-stream"
    )
    assert ref.kind == MediaKind.VIDEO
    assert "/staff-" in ref.key


@pytest.mark.asyncio
async def test_attach_failure(local_backend):
    local_backend.upload = AsyncMock(side_effect=ChatBackendError("bucket down"))
    pipeline = MediaAttachmentPipeline(local_backend)
    with pytest.raises(AttachFailedError):
        await pipeline.attach("SPG-AB12C", b"data", filename="a.jpg")


@pytest.mark.asyncio
async def test_attach_rejects_empty_payload(local_backend):
    with pytest.raises(AttachFailedError):
        await MediaAttachmentPipeline(local_backend).attach("SPG-AB12C", b"", filename="a.jpg")


@pytest.mark.asyncio
async def test_attach_voice_note(local_backend, storage):
    note = VoiceNote(data=b"opus", filename="voice-note-1.webm", duration=3.0)
    ref = await MediaAttachmentPipeline(local_backend).attach_voice_note("SPG-AB12C", note)

    assert ref.kind == MediaKind.AUDIO
    assert ref.key.endswith(".webm")
    assert storage.get(ref.key).content_type == "audio/webm"


@pytest.mark.asyncio
async def test_attach_empty_voice_note_fails(local_backend, storage):
    note = VoiceRecorder(clock=FakeClock()).stop()
    with pytest.raises(AttachFailedError):
        await MediaAttachmentPipeline(local_backend).attach_voice_note("SPG-AB12C", note)
    assert storage.keys() == []


def test_voice_recorder_toggle():
    clock = FakeClock()
    recorder = VoiceRecorder(clock=clock)
    assert not recorder.is_recording
    assert recorder.elapsed_label == "0:00"

    assert recorder.toggle() is None
    assert recorder.is_recording
    recorder.feed(b"abc")
    recorder.feed(b"")
    clock.now += 75
    recorder.feed(b"def")
    assert recorder.elapsed_label == "1:15"

    note = recorder.toggle()
    assert not recorder.is_recording
    assert note.data == b"abcdef"
    assert note.duration == 75
    assert note.content_type == "audio/webm"
    assert re.match(r"^voice-note-\d+\.webm$", note.filename)


def test_voice_recorder_stop_always_returns_note():
    recorder = VoiceRecorder(clock=FakeClock())
    note = recorder.stop()
    assert note.is_empty
    recorder.start()
    recorder.cancel()
    assert not recorder.is_recording
    recorder.feed(b"ignored")
    assert recorder.stop().is_empty
