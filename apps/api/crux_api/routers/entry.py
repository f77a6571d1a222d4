"""Public entry and role landing pages.

/dashboard and /master sit behind the Route Guard: an unauthenticated or
under-privileged browser navigation is answered with a 303 to the public
entry, never with a page that confirms the route exists.
"""

from fastapi import APIRouter, Depends

from crux_api.auth.roles import Role
from crux_api.auth.route_guard import AccessContext, require_role
from crux_api.config.env import get_public_entry_path

router = APIRouter(tags=["entry"])


@router.get("/")
async def public_entry() -> dict[str, str]:
    return {
        "service": "crux-api",
        "entry": get_public_entry_path(),
        "session": "/v1/auth/session",
    }


def _landing_summary(ctx: AccessContext, landing: str) -> dict:
    return {
        "landing": landing,
        "user_id": ctx.user_id,
        "role": ctx.profile.role,
        "tenant_id": ctx.tenant_id,
        "tenant_name": ctx.tenant.name if ctx.tenant is not None else None,
    }


@router.get("/dashboard")
async def dashboard(ctx: AccessContext = Depends(require_role(Role.USER))) -> dict:
    return _landing_summary(ctx, "/dashboard")


@router.get("/master")
async def master(ctx: AccessContext = Depends(require_role(Role.SUPER_ADMIN))) -> dict:
    return _landing_summary(ctx, "/master")
