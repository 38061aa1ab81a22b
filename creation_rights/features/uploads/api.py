from typing import Any

from fastapi import APIRouter, File, Form, Request, Response, UploadFile

from creation_rights.domain.errors import FabricError
from creation_rights.features.ledger.service import RightsLedger
from creation_rights.features.uploads.service import UploadPipeline
from creation_rights.web.errors import http_error, result_body

router = APIRouter(prefix="/api/users/{user}/uploads", tags=["uploads"])


def _pipeline(request: Request) -> UploadPipeline:
    state = request.app.state
    return UploadPipeline(state.blobs, state.queue, max_bytes=state.cfg.max_upload_bytes)


@router.post("")
async def upload(
    request: Request,
    user: str,
    file: UploadFile,
    creation_rights_id: str | None = Form(default=None, alias="creationRightsId"),
    thumbnail: UploadFile | None = File(default=None),
) -> dict[str, Any]:
    data = await file.read()
    client_thumbnail = await thumbnail.read() if thumbnail is not None else None
    try:
        result = _pipeline(request).upload(
            user,
            data,
            file.content_type or "",
            original_name=file.filename or "",
            creation_rights_id=creation_rights_id or None,
            client_thumbnail=client_thumbnail or None,
        )
    except FabricError as e:
        raise http_error(e)
    return result_body(result)


@router.get("/{creation_rights_id}")
def describe(request: Request, user: str, creation_rights_id: str) -> dict[str, Any]:
    try:
        return _pipeline(request).describe(user, creation_rights_id)
    except FabricError as e:
        raise http_error(e)


def _serve(request: Request, user: str, creation_rights_id: str, name: str) -> Response:
    try:
        data, content_type = _pipeline(request).open_asset(user, creation_rights_id, name)
    except FabricError as e:
        raise http_error(e)
    return Response(content=data, media_type=content_type)


@router.get("/{creation_rights_id}/download")
def download(request: Request, user: str, creation_rights_id: str) -> Response:
    return _serve(request, user, creation_rights_id, "file")


@router.get("/{creation_rights_id}/thumbnail")
def thumbnail(request: Request, user: str, creation_rights_id: str) -> Response:
    return _serve(request, user, creation_rights_id, "thumbnail.jpg")


@router.get("/{creation_rights_id}/files/{name}")
def asset_file(request: Request, user: str, creation_rights_id: str, name: str) -> Response:
    return _serve(request, user, creation_rights_id, name)


@router.post("/{creation_rights_id}/abandon")
def abandon(request: Request, user: str, creation_rights_id: str, reason: str = "") -> dict[str, Any]:
    try:
        return _pipeline(request).abandon(user, creation_rights_id, reason)
    except FabricError as e:
        raise http_error(e)


@router.post("/{creation_rights_id}/purge")
def purge(request: Request, user: str, creation_rights_id: str) -> dict[str, Any]:
    state = request.app.state
    try:
        referenced = RightsLedger(state.blobs, state.payments, state.queue).find_creation(
            user, creation_rights_id
        ) is not None
        deleted = _pipeline(request).purge_orphan(user, creation_rights_id, referenced)
    except FabricError as e:
        raise http_error(e)
    return {"deleted": deleted}
