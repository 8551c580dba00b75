"""
Media attachments: upload to object storage, then reference by URL.

The upload happens before any message exists, so a failed upload leaves
nothing behind in the conversation. Voice notes are captured by the
VoiceRecorder and go through the same pipeline as audio.
"""

from __future__ import annotations

import logging
import mimetypes
import secrets
import time
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Callable, List, Optional

from spg_chat.client.backend import ChatBackend
from spg_chat.client.errors import AttachFailedError, ChatBackendError
from spg_chat.constants.chat import MediaKind, SenderRole

logger = logging.getLogger(__name__)

VOICE_NOTE_CONTENT_TYPE = "audio/webm"
VOICE_NOTE_EXTENSION = "webm"

_FALLBACK_EXTENSIONS = {
    MediaKind.IMAGE: "jpg",
    MediaKind.VIDEO: "mp4",
    MediaKind.AUDIO: "webm",
}


def media_kind_for(content_type: Optional[str]) -> MediaKind:
    """Anything that is not an image or a video is treated as audio."""
    content_type = (content_type or "").lower()
    if content_type.startswith("image/"):
        return MediaKind.IMAGE
    if content_type.startswith("video/"):
        return MediaKind.VIDEO
    return MediaKind.AUDIO


def format_elapsed(seconds: float) -> str:
    total = max(0, int(seconds))
    return f"{total // 60}:{total % 60:02d}"


def _extension(filename: Optional[str], content_type: Optional[str], kind: MediaKind) -> str:
    if filename:
        suffix = PurePosixPath(filename).suffix.lstrip(".").lower()
        if suffix:
            return suffix
    if content_type:
        guessed = mimetypes.guess_extension(content_type.split(";")[0].strip())
        if guessed:
            return guessed.lstrip(".")
    return _FALLBACK_EXTENSIONS[kind]


def build_media_key(
    ref_code: str,
    extension: str,
    role: SenderRole = SenderRole.CUSTOMER,
    now_ms: Optional[int] = None,
) -> str:
    """Object key ``{ref_code}/{role-}{ms}-{hex}.{ext}``; only staff uploads carry a role prefix."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    prefix = "staff-" if role == SenderRole.STAFF else ""
    return f"{ref_code}/{prefix}{now_ms}-{secrets.token_hex(4)}.{extension}"


@dataclass(frozen=True)
class MediaReference:
    url: str
    kind: MediaKind
    key: str


@dataclass(frozen=True)
class VoiceNote:
    data: bytes
    filename: str
    duration: float
    content_type: str = VOICE_NOTE_CONTENT_TYPE

    @property
    def is_empty(self) -> bool:
        return not self.data


class MediaAttachmentPipeline:
    def __init__(self, backend: ChatBackend, role: SenderRole = SenderRole.CUSTOMER) -> None:
        self.backend = backend
        self.role = role

    async def attach(
        self,
        ref_code: str,
        data: bytes,
        kind: Optional[MediaKind] = None,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> MediaReference:
        if not ref_code:
            raise AttachFailedError("No active conversation to attach to")
        if not data:
            raise AttachFailedError("The selected file is empty")
        if content_type is None and filename:
            content_type, _ = mimetypes.guess_type(filename)
        kind = MediaKind(kind) if kind is not None else media_kind_for(content_type)
        key = build_media_key(ref_code, _extension(filename, content_type, kind), self.role)
        try:
            url = await self.backend.upload(key, data, content_type)
        except ChatBackendError as e:
            logger.warning("Upload of %s failed: %s", key, e)
            raise AttachFailedError(f"Failed to upload attachment: {e}") from e
        logger.debug("Uploaded %s (%d bytes) as %s", key, len(data), kind)
        return MediaReference(url=url, kind=kind, key=key)

    async def attach_voice_note(self, ref_code: str, note: VoiceNote) -> MediaReference:
        if note.is_empty:
            logger.info("Voice note %s captured no audio", note.filename)
        return await self.attach(
            ref_code,
            note.data,
            kind=MediaKind.AUDIO,
            filename=note.filename,
            content_type=note.content_type,
        )


@dataclass
class VoiceRecorder:
    """
    Idle / recording toggle around an external audio source.

    The capture device pushes encoded chunks through ``feed`` while
    recording. ``stop`` always yields a note, possibly empty, and the
    caller decides whether to send it.
    """

    clock: Callable[[], float] = time.monotonic
    _chunks: List[bytes] = field(default_factory=list, repr=False)
    _started_at: Optional[float] = field(default=None, repr=False)

    @property
    def is_recording(self) -> bool:
        return self._started_at is not None

    @property
    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return max(0.0, self.clock() - self._started_at)

    @property
    def elapsed_label(self) -> str:
        return format_elapsed(self.elapsed)

    def start(self) -> None:
        if self.is_recording:
            return
        self._chunks = []
        self._started_at = self.clock()

    def feed(self, chunk: bytes) -> None:
        if self.is_recording and chunk:
            self._chunks.append(chunk)

    def stop(self) -> VoiceNote:
        duration = self.elapsed
        data = b"".join(self._chunks)
        self._chunks = []
        self._started_at = None
        return VoiceNote(
            data=data,
            filename=f"voice-note-{int(time.time() * 1000)}.{VOICE_NOTE_EXTENSION}",
            duration=duration,
        )

    def toggle(self) -> Optional[VoiceNote]:
        """Start when idle (returns None), stop when recording (returns the note)."""
        if self.is_recording:
            return self.stop()
        self.start()
        return None

    def cancel(self) -> None:
        self._chunks = []
        self._started_at = None
