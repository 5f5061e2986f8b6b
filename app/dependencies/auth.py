from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request

from app.tickets.models import Actor
from app.tickets.state import ActorRole


def resolve_actor_from_profile(
    role: str | None,
    email: str | None,
    first_name: str | None = None,
    last_name: str | None = None,
    sbu: str | None = None,
) -> Actor:
    """Build the acting user from the selected profile.

    The portal has no password login: clients send the profile picked on the
    profile selection screen as ``X-User-*`` headers.
    """

    if not role or not email:
        raise HTTPException(status_code=401, detail="Access denied. No profile selected.")

    try:
        actor_role = ActorRole(role.strip().upper())
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="Invalid profile data.") from exc

    return Actor(
        email=email.strip(),
        role=actor_role,
        first_name=first_name or "Unknown",
        last_name=last_name or "User",
        sbu=sbu or None,
    )


async def get_current_user(
    request: Request,
    x_user_role: Annotated[str | None, Header()] = None,
    x_user_email: Annotated[str | None, Header()] = None,
    x_user_firstname: Annotated[str | None, Header()] = None,
    x_user_lastname: Annotated[str | None, Header()] = None,
    x_user_sbu: Annotated[str | None, Header()] = None,
) -> Actor:
    cached = getattr(request.state, "user", None)
    if isinstance(cached, Actor):
        return cached

    actor = resolve_actor_from_profile(x_user_role, x_user_email, x_user_firstname, x_user_lastname, x_user_sbu)
    request.state.user = actor
    return actor


def role_required(*roles: ActorRole) -> Callable[[Actor], Actor]:
    """Dependency factory ensuring the current user has one of ``roles``."""

    allowed = frozenset(roles)

    async def dependency(user: Annotated[Actor, Depends(get_current_user)]) -> Actor:
        if user.role not in allowed:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return dependency


CurrentUser = Annotated[Actor, Depends(get_current_user)]
