"""Tests for the HTTP chat backend."""

from datetime import datetime, timezone
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
import requests

from spg_chat.client.backend import HttpChatBackend
from spg_chat.client.chat_view import ChatView
from spg_chat.client.delivery import PollingChannel
from spg_chat.client.errors import (
    ChatBackendError,
    ClosedConversationError,
    RefCodeConflictError,
)
from spg_chat.constants.chat import ConversationStatus, DeliveryStatus, SenderRole
from spg_chat.schemas.chat_state import HistoryEntry
from spg_chat.schemas.message import MessageCreate


def _response(status_code, payload=None, text=""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = text
    resp.json.return_value = payload
    return resp


def _conversation_payload(ref_code="SPG-AB12C", status="open"):
    return {
        "id": str(uuid4()),
        "ref_code": ref_code,
        "status": status,
        "created_at": datetime.now(timezone.utc).isoformat(),
    }


@pytest.fixture
def http_session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def backend(http_session):
    return HttpChatBackend(base_url="http://chat.test/", timeout=5, session=http_session)


@pytest.mark.asyncio
async def test_create_conversation(backend, http_session):
    http_session.request.return_value = _response(201, _conversation_payload())
    conversation = await backend.create_conversation("SPG-AB12C")

    assert conversation.ref_code == "SPG-AB12C"
    http_session.request.assert_called_once_with(
        "POST", "http://chat.test/conversations", timeout=5, json={"ref_code": "SPG-AB12C"}
    )


@pytest.mark.asyncio
async def test_create_conversation_conflict(backend, http_session):
    http_session.request.return_value = _response(409, {"detail": "exists"})
    with pytest.raises(RefCodeConflictError):
        await backend.create_conversation("SPG-AB12C")


@pytest.mark.asyncio
async def test_lookup_not_found_returns_none(backend, http_session):
    http_session.request.return_value = _response(404, {"detail": "Conversation not found"})
    assert await backend.get_conversation_by_ref_code("SPG-ZZZZZ") is None
    assert await backend.get_conversation(str(uuid4())) is None


@pytest.mark.asyncio
async def test_create_message_closed(backend, http_session):
    http_session.request.return_value = _response(409, {"detail": "closed"})
    with pytest.raises(ClosedConversationError):
        await backend.create_message(
            str(uuid4()), MessageCreate(sender_role=SenderRole.CUSTOMER, text="hi")
        )


@pytest.mark.asyncio
async def test_transport_error_is_wrapped(backend, http_session):
    http_session.request.side_effect = requests.ConnectionError("no route")
    with pytest.raises(ChatBackendError):
        await backend.list_messages(str(uuid4()))


@pytest.mark.asyncio
async def test_server_error_is_wrapped(backend, http_session):
    http_session.request.return_value = _response(500, text="boom")
    with pytest.raises(ChatBackendError):
        await backend.update_conversation_status(str(uuid4()), ConversationStatus.CLOSED)


@pytest.mark.asyncio
async def test_list_conversations_reads_page(backend, http_session):
    http_session.request.return_value = _response(
        200, {"items": [_conversation_payload("SPG-AAAAA", "closed")], "total": 1}
    )
    conversations = await backend.list_conversations(status=ConversationStatus.CLOSED)
    assert [c.ref_code for c in conversations] == ["SPG-AAAAA"]
    assert http_session.request.call_args.kwargs["params"]["status"] == "closed"


@pytest.mark.asyncio
async def test_upload_returns_public_url(backend, http_session):
    http_session.request.return_value = _response(
        201, {"data": {"key": "SPG-AB12C/1.jpg", "url": "https://cdn.test/SPG-AB12C/1.jpg"}}
    )
    url = await backend.upload("SPG-AB12C/1.jpg", b"x", "image/jpeg")
    assert url == "https://cdn.test/SPG-AB12C/1.jpg"
    args, kwargs = http_session.request.call_args
    assert args == ("PUT", "http://chat.test/media/SPG-AB12C/1.jpg")
    assert kwargs["headers"] == {"Content-Type": "image/jpeg"}


def test_http_backend_cannot_push(backend):
    assert backend.capabilities.supports_push is False
    with pytest.raises(ChatBackendError):
        backend.subscribe_messages("c1", lambda m: None)


@pytest.mark.asyncio
async def test_malformed_message_body_is_wrapped(backend, http_session):
    http_session.request.return_value = _response(201, {})
    with pytest.raises(ChatBackendError):
        await backend.create_message(
            str(uuid4()), MessageCreate(sender_role=SenderRole.CUSTOMER, text="hi")
        )


@pytest.mark.asyncio
async def test_malformed_list_bodies_are_wrapped(backend, http_session):
    http_session.request.return_value = _response(200, {"detail": "not a list"})
    with pytest.raises(ChatBackendError):
        await backend.list_messages(str(uuid4()))

    http_session.request.return_value = _response(200, {"items": [{"ref_code": "SPG-AB12C"}]})
    with pytest.raises(ChatBackendError):
        await backend.list_conversations()


@pytest.mark.asyncio
async def test_missing_data_envelope_is_wrapped(backend, http_session):
    http_session.request.return_value = _response(200, {"updated": 3})
    with pytest.raises(ChatBackendError):
        await backend.mark_read(str(uuid4()), SenderRole.CUSTOMER)

    http_session.request.return_value = _response(201, None)
    with pytest.raises(ChatBackendError):
        await backend.upload("SPG-AB12C/1.jpg", b"x", "image/jpeg")


@pytest.mark.asyncio
async def test_view_flags_send_with_malformed_reply(
    backend, http_session, session_store, history, chat_settings
):
    conversation_id = str(uuid4())
    conversation = {**_conversation_payload(), "id": conversation_id}

    def route(method, url, **kwargs):
        if method == "GET" and url.endswith("/messages"):
            return _response(200, [])
        if method == "GET":
            return _response(200, conversation)
        return _response(201, {})

    http_session.request.side_effect = route
    view = ChatView(
        backend,
        session_store,
        history,
        channel=PollingChannel(backend, interval=60),
        settings=chat_settings,
    )
    await view.resume_from_history(
        HistoryEntry(ref_code="SPG-AB12C", conversation_id=conversation_id)
    )

    await view.send_text("Is the black granite in stock?")
    await view.drain()

    assert [m.status for m in view.messages] == [DeliveryStatus.FAILED]
    assert [n.description for n in view.pop_notices()] == [
        "Failed to send message. Please try again."
    ]
    await view.teardown()
