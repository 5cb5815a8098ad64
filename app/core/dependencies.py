"""FastAPI dependency injection utilities."""

from typing import Annotated

from fastapi import Depends, Header, Request

from app.core.exceptions import AuthenticationError, ForbiddenError
from app.core.security import Principal, principal_from_token


def get_current_principal(
    authorization: str = Header(..., description="Bearer token"),
) -> Principal:
    """Extract and validate the caller from the identity provider token."""
    if not authorization.startswith("Bearer "):
        raise AuthenticationError("Invalid authorization header format")

    token = authorization[7:]  # Remove "Bearer " prefix
    principal = principal_from_token(token)

    if not principal:
        raise AuthenticationError("Invalid or expired token")

    return principal


def require_institutional_user(
    principal: Annotated[Principal, Depends(get_current_principal)],
) -> Principal:
    """Allow only principals whose verified email is in the institutional domain."""
    if not principal.is_institutional:
        raise ForbiddenError("Sign-in is restricted to institutional email accounts")
    return principal


def get_upload_registry(request: Request):
    """Registry of in-flight upload runs, owned by the application instance."""
    return request.app.state.upload_registry


# Type aliases for dependency injection
CurrentPrincipal = Annotated[Principal, Depends(require_institutional_user)]
