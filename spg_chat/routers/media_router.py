"""
Media API: raw-body upload of chat attachments into object storage.

PUT /media/{key} stores the request body under key with the request's
content type and returns the public URL that messages reference.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from spg_chat.routers.utils.dependencies import get_object_storage
from spg_chat.storage.object_storage import ObjectStorage, ObjectStorageError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/media", tags=["media"])


@router.put("/{key:path}", response_model=dict[str, Any], status_code=201)
async def upload_media(
    key: str,
    request: Request,
    storage: ObjectStorage = Depends(get_object_storage),
) -> dict[str, Any]:
    if not key or key.startswith("/") or ".." in key.split("/"):
        raise HTTPException(status_code=400, detail="Invalid media key")
    body = await request.body()
    content_type = request.headers.get("content-type")
    try:
        storage.upload(key, body, content_type)
    except ObjectStorageError as e:
        logger.warning("Media upload failed for %s: %s", key, e)
        raise HTTPException(status_code=502, detail="Object storage upload failed")
    return {"data": {"key": key, "url": storage.get_public_url(key)}}
