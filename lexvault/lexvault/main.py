import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from lexvault.api import auth, documents, health, jurisdictions
from lexvault.auth import REQUEST_ID_HEADER, request_id_for
from lexvault.config import settings
from lexvault.dependencies import Services, build_services
from lexvault.errors import ErrorKind, ServiceError

logger = logging.getLogger(__name__)

PROBLEM_CONTENT_TYPE = "application/problem+json"


def _problem_response(request: Request, error: ServiceError) -> JSONResponse:
    if error.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {error.status_code} {error.kind.value}: {error.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} -> {error.status_code} {error.kind.value}: {error.message}")

    headers = {REQUEST_ID_HEADER: request_id_for(request)}
    if error.kind is ErrorKind.STORAGE_UNAVAILABLE:
        headers["Retry-After"] = "5"
    return JSONResponse(
        status_code=error.status_code,
        content=error.to_problem(instance=request.url.path),
        media_type=PROBLEM_CONTENT_TYPE,
        headers=headers,
    )


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    return _problem_response(request, exc)


async def validation_error_handler(
    request: Request, exc: RequestValidationError | ValidationError
) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part not in ("body", "query")),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    return _problem_response(
        request, ServiceError(ErrorKind.VALIDATION, "Request validation failed", errors=errors)
    )


def create_app(services: Services | None = None) -> FastAPI:
    """Build the API. Pass ``services`` to run against pre-built stores."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        app.state.services = build_services() if owned else services
        logger.info(f"LexVault API starting ({settings.environment})")
        try:
            yield
        finally:
            if owned:
                await app.state.services.close()
            logger.info("LexVault API stopped")

    app = FastAPI(title="LexVault", version="0.1.0", lifespan=lifespan)
    if services is not None:
        app.state.services = services

    @app.middleware("http")
    async def attach_request_id(request: Request, call_next):
        request_id = request_id_for(request)
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(ValidationError, validation_error_handler)

    app.include_router(health.router)
    app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
    app.include_router(documents.router, prefix="/api/documents", tags=["documents"])
    app.include_router(jurisdictions.router, prefix="/api/jurisdictions", tags=["jurisdictions"])
    return app


def main() -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
