"""
Backend collaborators for the chat client.

The client core only sees the async ChatBackend contract. LocalChatBackend
runs in-process over the SQLAlchemy services, the change feed and object
storage, and can push. HttpChatBackend talks to the chat API over HTTP and
can only be polled.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Protocol, Type, TypeVar
from urllib.parse import quote
from uuid import UUID

import requests
from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from spg_chat.client.errors import (
    ChatBackendError,
    ClosedConversationError,
    RefCodeConflictError,
)
from spg_chat.config import Settings, get_settings
from spg_chat.constants.chat import ConversationStatus, SenderRole
from spg_chat.core.app_state import state
from spg_chat.core.message_feed import (
    ConversationListener,
    MessageFeed,
    MessageListener,
    Subscription,
)
from spg_chat.schemas.conversation import (
    ConversationCreate,
    ConversationRead,
    ConversationUpdate,
)
from spg_chat.schemas.message import MessageCreate, MessageRead
from spg_chat.services.conversation_service import ConversationService
from spg_chat.services.exceptions import (
    ConversationClosedError,
    DuplicateRefCodeError,
    UnknownConversationError,
)
from spg_chat.services.message_service import MessageService
from spg_chat.storage.object_storage import ObjectStorage, ObjectStorageError
from spg_chat.utils.db.db_session_helper import db_session

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


@dataclass(frozen=True)
class BackendCapabilities:
    supports_push: bool = False


class ChatBackend(Protocol):
    capabilities: BackendCapabilities

    async def create_conversation(self, ref_code: str) -> ConversationRead: ...
    async def get_conversation(self, conversation_id: str) -> Optional[ConversationRead]: ...
    async def get_conversation_by_ref_code(self, ref_code: str) -> Optional[ConversationRead]: ...
    async def update_conversation_status(
        self, conversation_id: str, status: ConversationStatus
    ) -> ConversationRead: ...
    async def list_conversations(
        self, status: Optional[ConversationStatus] = None, q: Optional[str] = None
    ) -> List[ConversationRead]: ...
    async def create_message(self, conversation_id: str, data: MessageCreate) -> MessageRead: ...
    async def list_messages(self, conversation_id: str) -> List[MessageRead]: ...
    async def mark_read(self, conversation_id: str, reader_role: SenderRole) -> int: ...
    async def upload(self, key: str, data: bytes, content_type: Optional[str]) -> str: ...

    def subscribe_messages(
        self,
        conversation_id: str,
        on_message: MessageListener,
        on_conversation: Optional[ConversationListener] = None,
    ) -> Subscription: ...


def _as_uuid(value: str) -> Optional[UUID]:
    try:
        return value if isinstance(value, UUID) else UUID(str(value))
    except ValueError:
        return None


class LocalChatBackend:
    """In-process backend. Each call runs in its own database session on a worker thread."""

    capabilities = BackendCapabilities(supports_push=True)

    def __init__(
        self,
        feed: MessageFeed,
        storage: ObjectStorage,
        session_factory: Optional[Callable[[], Session]] = None,
    ) -> None:
        self.feed = feed
        self.storage = storage
        self._session_factory = session_factory
        self._lock = threading.Lock()

    async def _call(self, fn: Callable[[Session], Any]) -> Any:
        return await asyncio.to_thread(self._run, fn)

    def _run(self, fn: Callable[[Session], Any]) -> Any:
        # One session at a time; SQLite connections are shared between worker threads
        with self._lock:
            try:
                with db_session(self._session_factory) as db:
                    return fn(db)
            except SQLAlchemyError as e:
                raise ChatBackendError(f"Database error: {e}") from e

    async def create_conversation(self, ref_code: str) -> ConversationRead:
        def run(db: Session) -> ConversationRead:
            svc = ConversationService(db, self.feed)
            try:
                conversation = svc.create_conversation(ConversationCreate(ref_code=ref_code))
            except DuplicateRefCodeError as e:
                raise RefCodeConflictError(str(e)) from e
            return ConversationRead.model_validate(conversation)

        try:
            return await self._call(run)
        except ValidationError as e:
            raise ChatBackendError(f"Invalid reference code {ref_code!r}") from e

    async def get_conversation(self, conversation_id: str) -> Optional[ConversationRead]:
        key = _as_uuid(conversation_id)
        if key is None:
            return None

        def run(db: Session) -> Optional[ConversationRead]:
            conversation = ConversationService(db).get_conversation(key)
            return ConversationRead.model_validate(conversation) if conversation else None

        return await self._call(run)

    async def get_conversation_by_ref_code(self, ref_code: str) -> Optional[ConversationRead]:
        def run(db: Session) -> Optional[ConversationRead]:
            conversation = ConversationService(db).get_conversation_by_ref_code(ref_code)
            return ConversationRead.model_validate(conversation) if conversation else None

        return await self._call(run)

    async def update_conversation_status(
        self, conversation_id: str, status: ConversationStatus
    ) -> ConversationRead:
        key = _as_uuid(conversation_id)

        def run(db: Session) -> Optional[ConversationRead]:
            svc = ConversationService(db, self.feed)
            conversation = svc.update_conversation(key, ConversationUpdate(status=status))
            return ConversationRead.model_validate(conversation) if conversation else None

        result = await self._call(run) if key is not None else None
        if result is None:
            raise ChatBackendError(f"Conversation {conversation_id} not found")
        return result

    async def list_conversations(
        self, status: Optional[ConversationStatus] = None, q: Optional[str] = None
    ) -> List[ConversationRead]:
        def run(db: Session) -> List[ConversationRead]:
            rows = ConversationService(db).search(status=status, q=q)
            return [ConversationRead.model_validate(c) for c in rows]

        return await self._call(run)

    async def create_message(self, conversation_id: str, data: MessageCreate) -> MessageRead:
        key = _as_uuid(conversation_id)
        if key is None:
            raise ChatBackendError(f"Conversation {conversation_id} not found")

        def run(db: Session) -> MessageRead:
            svc = MessageService(db, self.feed)
            try:
                message = svc.create_message(key, data)
            except ConversationClosedError as e:
                raise ClosedConversationError(str(e)) from e
            except UnknownConversationError as e:
                raise ChatBackendError(str(e)) from e
            return MessageRead.model_validate(message)

        return await self._call(run)

    async def list_messages(self, conversation_id: str) -> List[MessageRead]:
        key = _as_uuid(conversation_id)
        if key is None:
            return []

        def run(db: Session) -> List[MessageRead]:
            return [
                MessageRead.model_validate(m)
                for m in MessageService(db).get_messages(key)
            ]

        return await self._call(run)

    async def mark_read(self, conversation_id: str, reader_role: SenderRole) -> int:
        key = _as_uuid(conversation_id)
        if key is None:
            return 0
        return await self._call(lambda db: MessageService(db).mark_read(key, reader_role))

    async def upload(self, key: str, data: bytes, content_type: Optional[str]) -> str:
        try:
            await asyncio.to_thread(self.storage.upload, key, data, content_type)
        except ObjectStorageError as e:
            raise ChatBackendError(str(e)) from e
        return self.storage.get_public_url(key)

    def subscribe_messages(
        self,
        conversation_id: str,
        on_message: MessageListener,
        on_conversation: Optional[ConversationListener] = None,
    ) -> Subscription:
        return self.feed.subscribe(str(conversation_id), on_message, on_conversation)


class HttpChatBackend:
    """Client for the chat HTTP API. Blocking requests run in a worker thread."""

    capabilities = BackendCapabilities(supports_push=False)

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.api_timeout_seconds
        self._http = session or requests.Session()

    def _send(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            return self._http.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning("%s %s failed: %s", method, url, e)
            raise ChatBackendError(f"{method} {path} failed: {e}") from e

    async def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        return await asyncio.to_thread(self._send, method, path, **kwargs)

    @staticmethod
    def _raise_for_status(resp: requests.Response) -> None:
        if resp.status_code >= 400:
            raise ChatBackendError(
                f"HTTP {resp.status_code}: {resp.text[:500] if resp.text else 'no body'}"
            )

    @staticmethod
    def _json(resp: requests.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise ChatBackendError(f"Invalid JSON: {e}") from e

    @staticmethod
    def _validate(model: Type[M], data: Any) -> M:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise ChatBackendError(f"Unexpected {model.__name__} payload: {e}") from e

    def _model(self, model: Type[M], resp: requests.Response) -> M:
        return self._validate(model, self._json(resp))

    def _models(self, model: Type[M], items: Any) -> List[M]:
        if not isinstance(items, list):
            raise ChatBackendError(
                f"Expected a list of {model.__name__}, got {type(items).__name__}"
            )
        return [self._validate(model, item) for item in items]

    def _page_items(self, resp: requests.Response) -> Any:
        body = self._json(resp)
        return body.get("items") if isinstance(body, dict) else body

    def _data_field(self, resp: requests.Response, name: str) -> Any:
        body = self._json(resp)
        try:
            return body["data"][name]
        except (KeyError, TypeError) as e:
            raise ChatBackendError(f"Response is missing data.{name}") from e

    async def create_conversation(self, ref_code: str) -> ConversationRead:
        resp = await self._request("POST", "/conversations", json={"ref_code": ref_code})
        if resp.status_code == 409:
            raise RefCodeConflictError(f"Reference code {ref_code} is taken")
        self._raise_for_status(resp)
        return self._model(ConversationRead, resp)

    async def get_conversation(self, conversation_id: str) -> Optional[ConversationRead]:
        resp = await self._request("GET", f"/conversations/{quote(str(conversation_id))}")
        if resp.status_code in (404, 422):
            return None
        self._raise_for_status(resp)
        return self._model(ConversationRead, resp)

    async def get_conversation_by_ref_code(self, ref_code: str) -> Optional[ConversationRead]:
        resp = await self._request("GET", f"/conversations/by-ref/{quote(ref_code)}")
        if resp.status_code == 404:
            return None
        self._raise_for_status(resp)
        return self._model(ConversationRead, resp)

    async def update_conversation_status(
        self, conversation_id: str, status: ConversationStatus
    ) -> ConversationRead:
        resp = await self._request(
            "PATCH",
            f"/conversations/{quote(str(conversation_id))}",
            json={"status": ConversationStatus(status).value},
        )
        self._raise_for_status(resp)
        return self._model(ConversationRead, resp)

    async def list_conversations(
        self, status: Optional[ConversationStatus] = None, q: Optional[str] = None
    ) -> List[ConversationRead]:
        params: dict[str, Any] = {"size": 100}
        if status is not None:
            params["status"] = ConversationStatus(status).value
        if q:
            params["q"] = q
        resp = await self._request("GET", "/conversations", params=params)
        self._raise_for_status(resp)
        return self._models(ConversationRead, self._page_items(resp))

    async def create_message(self, conversation_id: str, data: MessageCreate) -> MessageRead:
        resp = await self._request(
            "POST",
            f"/conversations/{quote(str(conversation_id))}/messages",
            json=data.model_dump(mode="json"),
        )
        if resp.status_code == 409:
            raise ClosedConversationError("Conversation is closed")
        self._raise_for_status(resp)
        return self._model(MessageRead, resp)

    async def list_messages(self, conversation_id: str) -> List[MessageRead]:
        resp = await self._request(
            "GET", f"/conversations/{quote(str(conversation_id))}/messages"
        )
        self._raise_for_status(resp)
        return self._models(MessageRead, self._json(resp))

    async def mark_read(self, conversation_id: str, reader_role: SenderRole) -> int:
        resp = await self._request(
            "POST",
            f"/conversations/{quote(str(conversation_id))}/messages/read",
            params={"reader": SenderRole(reader_role).value},
        )
        self._raise_for_status(resp)
        updated = self._data_field(resp, "updated")
        try:
            return int(updated)
        except (TypeError, ValueError) as e:
            raise ChatBackendError(f"Invalid read count {updated!r}") from e

    async def upload(self, key: str, data: bytes, content_type: Optional[str]) -> str:
        resp = await self._request(
            "PUT",
            f"/media/{quote(key)}",
            data=data,
            headers={"Content-Type": content_type or "application/octet-stream"},
        )
        self._raise_for_status(resp)
        return str(self._data_field(resp, "url"))

    def subscribe_messages(
        self,
        conversation_id: str,
        on_message: MessageListener,
        on_conversation: Optional[ConversationListener] = None,
    ) -> Subscription:
        raise ChatBackendError("The HTTP backend cannot push; use polling")


def build_chat_backend(
    settings: Optional[Settings] = None,
    feed: Optional[MessageFeed] = None,
    storage: Optional[ObjectStorage] = None,
) -> ChatBackend:
    """In-process backend over the process-wide feed and storage, or the HTTP client."""
    settings = settings or get_settings()
    kind = settings.client_backend.lower()
    if kind == "http":
        return HttpChatBackend(settings.api_base_url, settings.api_timeout_seconds)
    if kind == "local":
        return LocalChatBackend(feed or state.feed, storage or state.storage)
    raise ValueError(f"Unknown client backend: {settings.client_backend}")
