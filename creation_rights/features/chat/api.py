from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel

from creation_rights.domain.errors import FabricError
from creation_rights.domain.models import Participant
from creation_rights.features.chat.service import ConversationIndex
from creation_rights.web.errors import http_error, require_admin, result_body

router = APIRouter(tags=["chat"])


class ConversationRequest(BaseModel):
    participants: list[Participant]


class MessageRequest(BaseModel):
    sender: str
    content: str


class ReadRequest(BaseModel):
    participant: str


def _index(request: Request) -> ConversationIndex:
    return ConversationIndex(request.app.state.blobs, request.app.state.queue)


@router.post("/api/chats")
def find_or_create(request: Request, body: ConversationRequest) -> dict[str, Any]:
    try:
        result = _index(request).find_or_create(body.participants)
    except FabricError as e:
        raise http_error(e)
    return result_body(result)


@router.get("/api/chats/{conversation_id}/messages")
def list_messages(request: Request, conversation_id: str) -> dict[str, Any]:
    try:
        messages = _index(request).list_messages(conversation_id)
    except FabricError as e:
        raise http_error(e)
    return {"items": [m.to_blob() for m in messages]}


@router.post("/api/chats/{conversation_id}/messages")
def send_message(request: Request, conversation_id: str, body: MessageRequest) -> dict[str, Any]:
    try:
        result = _index(request).send_message(conversation_id, body.sender, body.content)
    except FabricError as e:
        raise http_error(e)
    return result_body(result)


@router.post("/api/chats/{conversation_id}/read")
def mark_read(request: Request, conversation_id: str, body: ReadRequest) -> dict[str, Any]:
    try:
        result = _index(request).mark_read(conversation_id, body.participant)
    except FabricError as e:
        raise http_error(e)
    return result_body(result)


@router.get("/api/participants/{identity}/chats")
def list_conversations(request: Request, identity: str) -> dict[str, Any]:
    index = _index(request)
    try:
        items = [
            {**c.to_blob(), "unread": index.unread_count_for(c.id, identity)} for c in index.list_conversations(identity)
        ]
    except FabricError as e:
        raise http_error(e)
    return {"items": items}


@router.get("/api/participants/{identity}/unread")
def unread_count(request: Request, identity: str) -> dict[str, Any]:
    try:
        return {"participant": identity, "unread": _index(request).unread_count(identity)}
    except FabricError as e:
        raise http_error(e)


@router.post("/api/admin/chats/merge-duplicates")
def merge_duplicates(request: Request) -> dict[str, Any]:
    require_admin(request)
    try:
        merged = _index(request).merge_duplicates()
    except FabricError as e:
        raise http_error(e)
    return {"merged": merged}
