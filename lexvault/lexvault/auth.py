from uuid import uuid4

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from lexvault.context import CallerContext
from lexvault.dependencies import Services, get_services
from lexvault.errors import ErrorKind, ServiceError

REQUEST_ID_HEADER = "X-Request-ID"

bearer_scheme = HTTPBearer(auto_error=False)


def request_id_for(request: Request) -> str:
    """Correlation ID: the caller's X-Request-ID, or one assigned on first use."""
    request_id = getattr(request.state, "request_id", None)
    if request_id is None:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
        request.state.request_id = request_id
    return request_id


def client_ip_for(request: Request) -> str:
    return request.client.host if request.client else "0.0.0.0"


async def get_anonymous_context(request: Request) -> CallerContext:
    """Context for unauthenticated endpoints (register, login, refresh, logout)."""
    return CallerContext(
        user_id=None,
        request_id=request_id_for(request),
        client_ip=client_ip_for(request),
    )


async def get_caller_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    services: Services = Depends(get_services),
) -> CallerContext:
    """
    Authenticate the request from its bearer access token.

    Raises:
        ServiceError: AUTHENTICATION_FAILED without a token, TOKEN_EXPIRED or
            TOKEN_INVALID for a bad one.
    """
    if credentials is None:
        raise ServiceError(ErrorKind.AUTHENTICATION_FAILED, "Missing bearer token")

    claims = services.tokens.verify(credentials.credentials)
    return CallerContext(
        user_id=claims.user_id,
        request_id=request_id_for(request),
        client_ip=client_ip_for(request),
    )
