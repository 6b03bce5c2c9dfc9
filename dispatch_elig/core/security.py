"""Request principals.

Authentication and staff authorization live in the gateway in front of this
service; it forwards the resolved identity and granted scopes as headers.
"""

from fastapi import Header, HTTPException, status

from dispatch_elig.core.auth import Principal, PrincipalType, parse_scope_header

SCOPE_DISPATCH_READ = "dispatch:read"
SCOPE_DISPATCH_DEBUG = "dispatch:debug"
SCOPE_DISPATCH_ADMIN = "dispatch:admin"
SCOPE_EVENTS_WRITE = "events:write"


async def get_principal(
    x_staff_id: str | None = Header(default=None, alias="X-Staff-Id"),
    x_module_id: str | None = Header(default=None, alias="X-Module-Id"),
    x_scopes: str | None = Header(default=None, alias="X-Scopes"),
) -> Principal:
    staff_id = (x_staff_id or "").strip()
    module_id = (x_module_id or "").strip()
    if staff_id:
        return Principal(
            principal_type=PrincipalType.STAFF,
            subject=staff_id,
            scopes=parse_scope_header(x_scopes),
        )
    if module_id:
        return Principal(
            principal_type=PrincipalType.MACHINE,
            subject=module_id,
            scopes=parse_scope_header(x_scopes),
        )
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="request requires X-Staff-Id or X-Module-Id",
    )


def require_scopes(principal: Principal, required: set[str]) -> None:
    try:
        principal.require_scopes(required)
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
