from typing import Any

from fastapi import APIRouter, Request

from creation_rights.domain.errors import FabricError, ValidationError
from creation_rights.domain.results import anomaly_to_dict
from creation_rights.features.ledger.service import RightsLedger, generate_creation_rights_id
from creation_rights.web.errors import http_error, require_admin, result_body

router = APIRouter(tags=["ledger"])


def _ledger(request: Request) -> RightsLedger:
    state = request.app.state
    return RightsLedger(state.blobs, state.payments, state.queue)


@router.get("/api/users/{user}/creations")
def list_creations(request: Request, user: str) -> dict[str, Any]:
    try:
        return {"items": _ledger(request).list_creations(user)}
    except FabricError as e:
        raise http_error(e)


@router.post("/api/users/{user}/creations")
def create_creation(request: Request, user: str, body: dict[str, Any]) -> dict[str, Any]:
    if not body.get("id"):
        crid = generate_creation_rights_id()
        body = {**body, "id": crid, "metadata": {**(body.get("metadata") or {}), "creationRightsId": crid}}
    try:
        result = _ledger(request).save_creation(user, body)
    except FabricError as e:
        raise http_error(e)
    return result_body(result)


@router.get("/api/users/{user}/creations/verify")
def verify_creations(request: Request, user: str) -> dict[str, Any]:
    try:
        anomalies = _ledger(request).verify_creations(user)
    except FabricError as e:
        raise http_error(e)
    return {"anomalies": [anomaly_to_dict(a) for a in anomalies]}


@router.get("/api/users/{user}/creations/{creation_id}")
def get_creation(request: Request, user: str, creation_id: str) -> dict[str, Any]:
    try:
        return _ledger(request).get_creation(user, creation_id)
    except FabricError as e:
        raise http_error(e)


@router.put("/api/users/{user}/creations/{creation_id}")
def save_creation(request: Request, user: str, creation_id: str, body: dict[str, Any]) -> dict[str, Any]:
    body_id = body.get("id") or creation_id
    if body_id != creation_id:
        raise http_error(ValidationError.single("id_mismatch", "id", "body id does not match the URL"))
    try:
        result = _ledger(request).save_creation(user, {**body, "id": creation_id})
    except FabricError as e:
        raise http_error(e)
    return result_body(result)


@router.delete("/api/users/{user}/creations/{creation_id}")
def delete_creation(request: Request, user: str, creation_id: str) -> dict[str, Any]:
    try:
        result = _ledger(request).delete_creation(user, creation_id)
    except FabricError as e:
        raise http_error(e)
    return result_body(result)


@router.get("/api/users/{user}/creations/{creation_id}/licenses")
def list_creation_licenses(request: Request, user: str, creation_id: str) -> dict[str, Any]:
    try:
        return {"items": _ledger(request).list_licenses_for_creation(user, creation_id)}
    except FabricError as e:
        raise http_error(e)


@router.get("/api/users/{user}/creations/{creation_id}/licenses/audit")
def audit_licenses(request: Request, user: str, creation_id: str) -> dict[str, Any]:
    try:
        anomalies = _ledger(request).audit_licenses(user, creation_id)
    except FabricError as e:
        raise http_error(e)
    return {"anomalies": [anomaly_to_dict(a) for a in anomalies]}


@router.post("/api/users/{user}/creations/{creation_id}/licenses/{transaction_id}/revoke")
def revoke_license(request: Request, user: str, creation_id: str, transaction_id: str) -> dict[str, Any]:
    try:
        result = _ledger(request).revoke_license(user, creation_id, transaction_id)
    except FabricError as e:
        raise http_error(e)
    return result_body(result)


@router.get("/api/creations/published")
def list_published(request: Request) -> dict[str, Any]:
    try:
        return {"items": _ledger(request).list_published()}
    except FabricError as e:
        raise http_error(e)


@router.post("/api/licenses")
def record_license(request: Request, body: dict[str, Any]) -> dict[str, Any]:
    try:
        result = _ledger(request).record_license(body)
    except FabricError as e:
        raise http_error(e)
    return result_body(result)


@router.get("/api/users/{user}/licenses")
def list_licenses(request: Request, user: str, role: str = "purchaser") -> dict[str, Any]:
    ledger = _ledger(request)
    try:
        items = ledger.list_creator_licenses(user) if role == "creator" else ledger.list_licenses(user)
    except FabricError as e:
        raise http_error(e)
    return {"items": items}


@router.post("/api/admin/replication/replay")
def replay_replication(request: Request) -> dict[str, Any]:
    require_admin(request)
    try:
        report = _ledger(request).replay_gaps()
    except FabricError as e:
        raise http_error(e)
    return {"applied": report.applied, "failed": report.failed, "superseded": report.superseded}


@router.post("/api/admin/users/{user}/creations/rebuild")
def rebuild_creations(request: Request, user: str) -> dict[str, Any]:
    require_admin(request)
    try:
        items = _ledger(request).rebuild_creations(user)
    except FabricError as e:
        raise http_error(e)
    return {"count": len(items), "items": items}
