import hmac
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, status

from plugin_jobs.config.settings import AuthMode, Settings, get_settings
from plugin_jobs.core.exceptions import ForbiddenError


def secure_compare(provided: str, expected: str) -> bool:
    """Constant-time string comparison."""
    return hmac.compare_digest(provided.encode(), expected.encode())


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


@dataclass
class Principal:
    """Represents the current authenticated user."""

    user_id: str
    roles: list[str]
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles


async def get_principal(
    x_user_id: str | None = Header(None, alias="X-User-ID"),
    x_user_role: str | None = Header(None, alias="X-User-Role"),
    authorization: str | None = Header(None),
    settings: Settings = Depends(get_settings),
) -> Principal:
    """
    Dependency injection function to get the current principal.

    Behavior based on AUTH_MODE:
    - none: Returns the dev admin principal
    - dev: Extract user and role from headers
    - token: Require the admin bearer token
    """
    if settings.auth_mode == AuthMode.NONE:
        return Principal(user_id="system", roles=["admin"])
    elif settings.auth_mode == AuthMode.DEV:
        if not x_user_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="X-User-ID header is required in dev auth mode",
            )

        roles = [x_user_role.lower()] if x_user_role else ["user"]
        return Principal(user_id=x_user_id, roles=roles)
    elif settings.auth_mode == AuthMode.TOKEN:
        token = _bearer_token(authorization)
        if not token or not secure_compare(token, settings.admin_api_token or ""):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication required",
            )
        return Principal(user_id=x_user_id or "api-token", roles=["admin"])
    else:
        raise ValueError(f"Unknown auth mode: {settings.auth_mode}")


async def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    """Reject principals without the admin role."""
    if not principal.is_admin:
        raise ForbiddenError("Admin access required", {"user_id": principal.user_id})
    return principal


def verify_cron_secret(
    settings: Settings,
    x_cron_secret: str | None,
    authorization: str | None,
) -> bool:
    """
    Check a cron caller's shared secret.

    Cron processing is disabled entirely when no secret is configured.
    """
    if not settings.cron_secret:
        return False

    provided = x_cron_secret or _bearer_token(authorization)
    if not provided:
        return False

    return secure_compare(provided, settings.cron_secret)


# Convenience type aliases for dependency injection
PrincipalDep = Depends(get_principal)
AdminDep = Depends(require_admin)
