import logging

from fastapi import APIRouter, Depends, Response, status

from lexvault.auth import get_anonymous_context
from lexvault.context import CallerContext
from lexvault.dependencies import Services, get_services
from lexvault.schemas import (
    AuthResponse,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    TokenPair,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    ctx: CallerContext = Depends(get_anonymous_context),
    services: Services = Depends(get_services),
) -> AuthResponse:
    """Create an account and sign it in."""
    return await services.accounts.register(ctx, request)


@router.post("/login", response_model=AuthResponse)
async def login(
    request: LoginRequest,
    ctx: CallerContext = Depends(get_anonymous_context),
    services: Services = Depends(get_services),
) -> AuthResponse:
    return await services.accounts.login(ctx, request)


@router.post("/refresh", response_model=TokenPair)
async def refresh(
    request: RefreshRequest,
    ctx: CallerContext = Depends(get_anonymous_context),
    services: Services = Depends(get_services),
) -> TokenPair:
    """Exchange a refresh token for a new pair. The presented token is consumed."""
    return await services.tokens.refresh(request.refresh_token, ctx)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    request: RefreshRequest,
    ctx: CallerContext = Depends(get_anonymous_context),
    services: Services = Depends(get_services),
) -> Response:
    await services.tokens.revoke(request.refresh_token, ctx)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
