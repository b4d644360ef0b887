from fastapi import APIRouter, Request

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("", summary="Public health probe")
async def health(request: Request) -> dict[str, str]:
    database = "ok" if getattr(request.app.state, "ticket_service", None) is not None else "unavailable"
    return {"status": "ok", "database": database}
