from __future__ import annotations

from typing import Optional

from spg_chat.constants.chat import MEDIA_PREVIEW_LABELS, PREVIEW_MAX_LENGTH, MediaKind


def build_preview(text: Optional[str], media_kind: Optional[str]) -> Optional[str]:
    """Inbox preview line: the text itself, or a label for a bare attachment."""
    if text and text.strip():
        preview = " ".join(text.split())
        if len(preview) > PREVIEW_MAX_LENGTH:
            preview = preview[: PREVIEW_MAX_LENGTH - 1] + "…"
        return preview
    if media_kind:
        return MEDIA_PREVIEW_LABELS.get(MediaKind(media_kind))
    return None
