from typing import Any

from fastapi import HTTPException, Request

from creation_rights.domain.errors import (
    FabricError,
    NotFound,
    PaymentNotConfirmed,
    ScaffoldError,
    StorageError,
    ValidationError,
)
from creation_rights.domain.results import OperationResult
from creation_rights.infra.payments import PaymentProcessorError


def http_error(e: FabricError) -> HTTPException:
    if isinstance(e, NotFound):
        return HTTPException(status_code=404, detail={"code": e.code, "message": str(e)})
    if isinstance(e, ValidationError):
        return HTTPException(
            status_code=422,
            detail={
                "code": e.code,
                "issues": [{"code": i.code, "path": i.path, "message": i.message} for i in e.issues],
            },
        )
    if isinstance(e, PaymentNotConfirmed):
        return HTTPException(
            status_code=402,
            detail={"code": e.code, "transaction_id": e.transaction_id, "payment_status": e.status},
        )
    if isinstance(e, ScaffoldError):
        return HTTPException(status_code=503, detail={"code": e.code, "message": str(e)})
    if isinstance(e, (StorageError, PaymentProcessorError)):
        return HTTPException(status_code=502, detail={"code": e.code, "message": str(e)})
    return HTTPException(status_code=500, detail={"code": e.code, "message": str(e)})


def result_body(result: OperationResult) -> dict[str, Any]:
    """Body for a write endpoint; a failed result becomes a 502."""
    if not result.ok:
        raise HTTPException(status_code=502, detail=result.to_dict())
    return result.to_dict()


def require_admin(request: Request) -> None:
    cfg = request.app.state.cfg
    expected = getattr(cfg, "admin_secret", None)
    provided = request.headers.get("X-Admin-Secret")
    if not expected or not provided or provided != expected:
        raise HTTPException(status_code=401, detail="admin_unauthorized")
