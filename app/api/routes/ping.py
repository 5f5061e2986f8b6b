from fastapi import APIRouter

from app.dependencies.tickets import PrivilegedUser

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health probe")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/secure", summary="Probe restricted to PM-Ops and administrators")
async def secure_ping(user: PrivilegedUser) -> dict[str, str]:
    return {"status": "ok", "user": user.email, "role": user.role.value}
