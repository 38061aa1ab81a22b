from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/api/health")
def health(request: Request) -> dict[str, object]:
    cfg = request.app.state.cfg
    return {"status": "ok", "storage_backend": cfg.storage_backend}
