"""Role-Based Access Control (RBAC) utilities."""

from enum import Enum
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from lotstock.core.security import decode_access_token


class UserRole(str, Enum):
    """Storefront user roles."""

    ADMIN = "admin"
    STAFF = "staff"
    CUSTOMER = "customer"


# Role hierarchy: admin > staff > customer
ROLE_HIERARCHY = {
    UserRole.ADMIN: 3,
    UserRole.STAFF: 2,
    UserRole.CUSTOMER: 1,
}


class TokenData:
    """Decoded token data.

    Attributes:
        user_id: The user's ID in the storefront.
        username: Display name recorded as ``created_by`` on moves.
        role: The user's role.
    """

    def __init__(self, user_id: int, username: str, role: UserRole):
        self.user_id = user_id
        self.username = username
        self.role = role

    @property
    def actor(self) -> str:
        return self.username or str(self.user_id)


async def get_current_user(request: Request) -> TokenData:
    """Get the current authenticated user from JWT token.

    Checks in order:
    1. Authorization: Bearer <token> header
    2. access_token cookie (HttpOnly)
    """
    payload = None

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1]
        if token:
            payload = decode_access_token(token)

    # Fall back to cookie if no Bearer or Bearer was invalid
    if payload is None:
        cookie_token = request.cookies.get("access_token")
        if cookie_token:
            payload = decode_access_token(cookie_token)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("sub")
    role = payload.get("role")
    if user_id is None or role is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    try:
        user_role = UserRole(role)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid role in token",
        )

    return TokenData(
        user_id=int(user_id),
        username=payload.get("username", ""),
        role=user_role,
    )


def require_role(minimum_role: UserRole):
    """Dependency to require a minimum role level."""

    async def role_checker(
        current_user: Annotated[TokenData, Depends(get_current_user)]
    ) -> TokenData:
        user_level = ROLE_HIERARCHY.get(current_user.role, 0)
        required_level = ROLE_HIERARCHY.get(minimum_role, 0)

        if user_level < required_level:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role {minimum_role.value} or higher",
            )
        return current_user

    return role_checker


# Common role dependencies
RequireStaff = Annotated[TokenData, Depends(require_role(UserRole.STAFF))]
