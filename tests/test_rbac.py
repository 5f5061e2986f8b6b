import pytest
from fastapi import HTTPException

from app.dependencies.auth import resolve_actor_from_profile, role_required
from app.tickets.models import Actor
from app.tickets.state import ActorRole


@pytest.mark.asyncio
async def test_role_required_allows_authorized_user():
    dependency = role_required(ActorRole.ADMIN)
    user = Actor(email="alice@example.com", role=ActorRole.ADMIN)
    result = await dependency(user)  # type: ignore[arg-type]
    assert result.email == "alice@example.com"


@pytest.mark.asyncio
async def test_role_required_rejects_unauthorized_user():
    dependency = role_required(ActorRole.PM_OPS, ActorRole.ADMIN)
    user = Actor(email="bob@example.com", role=ActorRole.PRODUCT_MANAGER)
    with pytest.raises(HTTPException) as exc:
        await dependency(user)  # type: ignore[arg-type]

    assert exc.value.status_code == 403
    assert exc.value.detail == "Insufficient permissions"


def test_profile_resolution_normalizes_role_and_defaults_names():
    actor = resolve_actor_from_profile(" pm_ops ", " ops@example.com ")

    assert actor.role == ActorRole.PM_OPS
    assert actor.email == "ops@example.com"
    assert actor.display_name == "Unknown User"
    assert actor.is_privileged


@pytest.mark.parametrize(
    ("role", "email", "detail"),
    [
        (None, "a@example.com", "Access denied. No profile selected."),
        ("ADMIN", None, "Access denied. No profile selected."),
        ("VIEWER", "a@example.com", "Invalid profile data."),
    ],
)
def test_profile_resolution_rejects_incomplete_profiles(role, email, detail):
    with pytest.raises(HTTPException) as exc:
        resolve_actor_from_profile(role, email)

    assert exc.value.status_code == 401
    assert exc.value.detail == detail
