from collections.abc import Callable
from enum import Enum
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer


class Role(str, Enum):
    """Supported roles."""

    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"
    SUBMITTER = "submitter"


class Surface(str, Enum):
    """Admin surface a user works from; decides which departments they see."""

    SYSAD = "sysad"
    MERCHANT = "merchant"
    MOTORPOOL = "motorpool"
    TREASURY = "treasury"


class User:
    """Authenticated admin."""

    def __init__(
        self,
        username: str,
        roles: tuple[Role, ...],
        *,
        display_name: str | None = None,
        surface: Surface | None = None,
        email: str | None = None,
    ):
        self.username = username
        self.roles = roles
        self.display_name = display_name or username
        self.surface = surface
        self.email = email

    def has_role(self, role: Role) -> bool:
        return role in self.roles


TOKEN_USER_MAP: dict[str, User] = {
    "sysad-token": User(
        "sysad",
        (Role.ADMIN, Role.EDITOR, Role.VIEWER),
        display_name="System Admin",
        surface=Surface.SYSAD,
    ),
    "merchant-token": User(
        "merchant-admin",
        (Role.EDITOR, Role.VIEWER),
        display_name="Merchant Office Admin",
        surface=Surface.MERCHANT,
    ),
    "motorpool-token": User(
        "motorpool-admin",
        (Role.EDITOR, Role.VIEWER),
        display_name="Motorpool Admin",
        surface=Surface.MOTORPOOL,
    ),
    "treasury-token": User(
        "treasury-admin",
        (Role.EDITOR, Role.VIEWER),
        display_name="Treasury Admin",
        surface=Surface.TREASURY,
    ),
    "auditor-token": User("auditor", (Role.VIEWER,), display_name="Auditor", surface=Surface.SYSAD),
    "student-token": User(
        "jamie.cruz",
        (Role.SUBMITTER,),
        display_name="Jamie Cruz",
        email="jamie@students.nu.edu",
    ),
}

bearer_scheme = HTTPBearer(auto_error=False)


def resolve_user_from_token(token: str | None) -> User:
    """Return the user associated with the bearer token; no token means an anonymous submitter."""

    if token is None:
        return User(username="anonymous", roles=())

    user = TOKEN_USER_MAP.get(token)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")
    return user


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
) -> User:
    """Static token lookup standing in for the portal's real admin login."""

    cached = getattr(request.state, "user", None)
    if isinstance(cached, User):
        return cached

    token = credentials.credentials if credentials is not None else None
    user = resolve_user_from_token(token)
    request.state.user = user
    return user


def role_required(role: Role) -> Callable[[User], User]:
    """Dependency factory ensuring the current user has the requested role."""

    async def dependency(user: Annotated[User, Depends(get_current_user)]) -> User:
        if not user.has_role(role):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return dependency


CurrentUser = Annotated[User, Depends(get_current_user)]
