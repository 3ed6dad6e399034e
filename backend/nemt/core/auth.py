"""Tenant, actor and role resolution for API routes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from nemt.core.config import get_settings
from nemt.core.logging import logger


security = HTTPBearer(auto_error=False)

SUPPORTED_ROLES = {"dispatcher", "billing", "admin", "driver"}
DEFAULT_ROLE = "admin"


@dataclass
class TenantContext:
    tenant_id: str
    authenticated: bool
    actor: str
    role: str


@dataclass(frozen=True)
class TokenGrant:
    tenant_id: str
    role: Optional[str] = None
    actor: Optional[str] = None


def _normalize_role(value: str | None) -> Optional[str]:
    role = (value or "").strip().lower()
    if not role:
        return None
    if role not in SUPPORTED_ROLES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported role '{value}'. Expected one of: {sorted(SUPPORTED_ROLES)}",
        )
    return role


def _split_grant(item: str) -> Tuple[str, str, str, str]:
    parts = [part.strip() for part in item.split(":", 3)] + ["", ""]
    return parts[0], parts[1], parts[2], parts[3]


def parse_tenant_tokens(raw: str) -> Dict[str, TokenGrant]:
    """Parse `token:tenant[:role[:actor]]` comma-separated grants.

    A role in the grant pins the caller's role and an actor pins the caller's
    identity; the X-Actor-Role and X-Actor headers only fill in what the
    token leaves open. Driver tokens must name their driver id.
    """
    grants: Dict[str, TokenGrant] = {}
    for segment in (raw or "").split(","):
        item = segment.strip()
        if not item:
            continue
        if ":" not in item:
            logger.warning("Ignoring malformed tenant token entry", entry=item)
            continue
        token, tenant, role, actor = _split_grant(item)
        if role and role.lower() not in SUPPORTED_ROLES:
            logger.warning("Ignoring tenant token with unknown role", tenant=tenant, role=role)
            continue
        if token and tenant:
            grants[token] = TokenGrant(tenant_id=tenant, role=role.lower() or None, actor=actor or None)
    return grants


def get_tenant_context(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    x_tenant_id: str | None = Header(default=None, alias="X-Tenant-ID"),
    x_actor_role: str | None = Header(default=None, alias="X-Actor-Role"),
    x_actor: str | None = Header(default=None, alias="X-Actor"),
) -> TenantContext:
    """Resolve tenant, actor and role from the bearer token and headers."""
    settings = get_settings()
    header_tenant = (x_tenant_id or "").strip()
    actor_name = (x_actor or "").strip()
    requested_role = _normalize_role(x_actor_role)

    if not settings.auth_enabled:
        return TenantContext(
            tenant_id=header_tenant or (settings.default_tenant_id or "demo").strip() or "demo",
            authenticated=False,
            actor=actor_name or "anonymous",
            role=requested_role or DEFAULT_ROLE,
        )

    if not credentials or not credentials.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Bearer token required")

    grant = parse_tenant_tokens(settings.tenant_tokens).get(credentials.credentials.strip())
    if grant is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid bearer token")
    if header_tenant and header_tenant != grant.tenant_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Token tenant mismatch")
    if grant.role and requested_role and requested_role != grant.role:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Token is limited to role '{grant.role}'",
        )

    role = grant.role or requested_role or DEFAULT_ROLE
    if grant.actor:
        if actor_name and actor_name != grant.actor:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Token actor mismatch")
        actor = grant.actor
    elif role == "driver":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Driver access requires a token bound to a driver id",
        )
    else:
        actor = actor_name or "token"

    return TenantContext(
        tenant_id=grant.tenant_id,
        authenticated=True,
        actor=actor,
        role=role,
    )


def require_roles(*allowed_roles: str):
    """Dependency factory that enforces role-based access control."""
    allowed = {role.strip().lower() for role in allowed_roles if role.strip()}
    if not allowed:
        raise ValueError("At least one role is required")
    unknown = allowed - SUPPORTED_ROLES
    if unknown:
        raise ValueError(f"Unknown roles: {sorted(unknown)}")

    def _guard(context: TenantContext = Depends(get_tenant_context)) -> TenantContext:
        if context.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{context.role}' not permitted for this operation",
            )
        return context

    return _guard
