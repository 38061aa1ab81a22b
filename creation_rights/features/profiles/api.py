from typing import Any

from fastapi import APIRouter, Body, HTTPException, Request, Response, UploadFile
from pydantic import BaseModel

from creation_rights.domain.enums import UserType
from creation_rights.domain.errors import FabricError
from creation_rights.domain.models import ProfileUpdate
from creation_rights.features.profiles.service import ProfileService
from creation_rights.web.errors import http_error, result_body

router = APIRouter(prefix="/api/users", tags=["profiles"])


class SessionRequest(BaseModel):
    user_id: str
    email: str = ""
    name: str = ""
    user_type: UserType = UserType.creator


def _service(request: Request) -> ProfileService:
    return ProfileService(request.app.state.blobs, request.app.state.queue)


@router.post("/session")
def sign_in(request: Request, body: SessionRequest) -> dict[str, Any]:
    try:
        profile, created = _service(request).sign_in(
            user_id=body.user_id, email=body.email, name=body.name, user_type=body.user_type
        )
    except FabricError as e:
        raise http_error(e)
    return {"user": profile.id, "created": created, "profile": profile.to_blob()}


@router.get("/search")
def search(request: Request, q: str = "", user_type: UserType | None = None) -> dict[str, Any]:
    try:
        found = _service(request).search_profiles(q, user_type)
    except FabricError as e:
        raise http_error(e)
    return {"items": [p.to_blob() for p in found]}


@router.get("/{user}/profile")
def get_profile(request: Request, user: str) -> dict[str, Any]:
    try:
        return _service(request).get_profile(user).to_blob()
    except FabricError as e:
        raise http_error(e)


@router.put("/{user}/profile")
def update_profile(request: Request, user: str, body: ProfileUpdate) -> dict[str, Any]:
    try:
        return _service(request).update_profile(user, body).to_blob()
    except FabricError as e:
        raise http_error(e)


@router.post("/{user}/profile-photo")
async def upload_photo(request: Request, user: str, file: UploadFile) -> dict[str, Any]:
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="empty_file")
    try:
        result = _service(request).upload_photo(user, data, file.content_type or "")
    except FabricError as e:
        raise http_error(e)
    return result_body(result)


@router.get("/{user}/profile-photo/{name}")
def get_photo(request: Request, user: str, name: str) -> Response:
    try:
        data, content_type = _service(request).open_photo(user, name)
    except FabricError as e:
        raise http_error(e)
    return Response(content=data, media_type=content_type)


@router.get("/{user}/folders")
def load_folders(request: Request, user: str) -> Any:
    try:
        return _service(request).load_folders(user)
    except FabricError as e:
        raise http_error(e)


@router.put("/{user}/folders")
def save_folders(request: Request, user: str, body: Any = Body(...)) -> dict[str, Any]:
    try:
        _service(request).save_folders(user, body)
    except FabricError as e:
        raise http_error(e)
    return {"success": True}
