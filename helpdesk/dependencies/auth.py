from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from helpdesk.tickets.models import Actor, Role

TOKEN_USER_MAP: dict[str, tuple[str, Role]] = {
    "admin-token": ("admin", Role.ADMIN),
    "csr-token": ("csr", Role.CUSTOMER_SERVICE_REP),
    "farmer-token": ("farmer", Role.FARMER),
    "provider-token": ("provider", Role.SERVICE_PROVIDER),
}

bearer_scheme = HTTPBearer(auto_error=False)


def resolve_user_from_token(token: str | None) -> Actor:
    """Return the identity associated with the provided bearer token."""

    if token is None:
        raise HTTPException(status_code=401, detail="Not authenticated")

    if token not in TOKEN_USER_MAP:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")

    user_id, role = TOKEN_USER_MAP[token]
    return Actor(id=user_id, role=role)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
) -> Actor:
    """Very small authentication stub.

    Tokens are mapped to a fixed set of identities. A real deployment swaps
    this for the platform's session service; the ticket engine only ever sees
    the resolved ``{id, role}`` pair.
    """

    cached = getattr(request.state, "user", None)
    if isinstance(cached, Actor):
        return cached

    token = credentials.credentials if credentials is not None else None
    user = resolve_user_from_token(token)
    request.state.user = user
    return user


def role_required(*roles: Role) -> Callable[[Actor], Actor]:
    """Dependency factory ensuring the current user holds one of ``roles``."""

    async def dependency(user: Annotated[Actor, Depends(get_current_user)]) -> Actor:
        if not user.has_role(*roles):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return dependency


CurrentUser = Annotated[Actor, Depends(get_current_user)]
