from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from repairshop.accounts import AccountRepository
from repairshop.tickets.models import Requester, Role

bearer_scheme = HTTPBearer(auto_error=False)

_UNRESOLVED = object()


def get_account_repository(request: Request) -> AccountRepository:
    accounts = getattr(request.app.state, "accounts", None)
    if accounts is None:
        raise HTTPException(status_code=503, detail="Account store is not configured")
    return accounts


async def resolve_requester_from_token(token: str | None, accounts: AccountRepository) -> Requester | None:
    """Return the requester owning ``token``; ``None`` means anonymous."""

    if token is None:
        return None
    requester = await accounts.resolve_token(token)
    if requester is None:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")
    return requester


async def get_optional_requester(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
) -> Requester | None:
    """Resolve the caller if a bearer token was sent, otherwise anonymous.

    The RBAC middleware usually resolves the token first and caches the
    result on ``request.state``.
    """

    cached = getattr(request.state, "requester", _UNRESOLVED)
    if cached is not _UNRESOLVED:
        return cached

    token = credentials.credentials if credentials is not None else None
    requester = await resolve_requester_from_token(token, get_account_repository(request))
    request.state.requester = requester
    return requester


async def get_current_requester(
    requester: Annotated[Requester | None, Depends(get_optional_requester)],
) -> Requester:
    if requester is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return requester


def role_required(*roles: Role) -> Callable[[Requester], Requester]:
    """Dependency factory ensuring the current requester has one of ``roles``."""

    async def dependency(requester: Annotated[Requester, Depends(get_current_requester)]) -> Requester:
        if requester.role not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return requester

    return dependency


require_staff = role_required(Role.TECHNICIAN, Role.ADMIN)
require_admin = role_required(Role.ADMIN)

OptionalRequester = Annotated[Requester | None, Depends(get_optional_requester)]
CurrentRequester = Annotated[Requester, Depends(get_current_requester)]
StaffRequester = Annotated[Requester, Depends(require_staff)]
AdminRequester = Annotated[Requester, Depends(require_admin)]
