"""Auth API endpoints."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm

from campaign_dialer.schemas.auth import (
    OperatorResponse,
    Token,
    TokenRefreshRequest,
    TokenRefreshResponse,
)
from campaign_dialer.services.auth_service import (
    authenticate_user,
    create_access_token,
    create_refresh_token,
    get_user,
    verify_token,
)

router = APIRouter(prefix="/auth", tags=["auth"])

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


async def get_current_user(token: Annotated[str, Depends(oauth2_scheme)]) -> dict[str, Any]:
    """Get current operator from JWT token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = verify_token(token, "access")
    if payload is None:
        raise credentials_exception

    user = get_user(payload.get("sub") or "")
    if user is None:
        raise credentials_exception
    return user


CurrentUser = Annotated[dict[str, Any], Depends(get_current_user)]


@router.post("/login", response_model=Token)
async def login(form_data: Annotated[OAuth2PasswordRequestForm, Depends()]) -> Token:
    """Login with the operator username and password."""
    user = authenticate_user(form_data.username, form_data.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return Token(
        access_token=create_access_token(data={"sub": user["username"]}),
        refresh_token=create_refresh_token(data={"sub": user["username"]}),
    )


@router.post("/refresh", response_model=TokenRefreshResponse)
async def refresh_token(request: TokenRefreshRequest) -> TokenRefreshResponse:
    """Exchange a refresh token for a new access token."""
    payload = verify_token(request.refresh_token, "refresh")
    username = payload.get("sub") if payload else None
    if not username or get_user(username) is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid refresh token",
        )
    return TokenRefreshResponse(access_token=create_access_token(data={"sub": username}))


@router.get("/me", response_model=OperatorResponse)
async def get_me(current_user: CurrentUser) -> OperatorResponse:
    return OperatorResponse(
        username=current_user["username"],
        role=current_user["role"],
        is_active=current_user.get("is_active", True),
    )
