from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from saga_worker.errors import NotFoundError, ProviderError, ValidationError
from saga_worker.logging import logger

from .middleware import StructuredLoggingMiddleware
from .routes import router


def create_app() -> FastAPI:
    app = FastAPI(title="saga-pipeline", version="1.0.0")
    app.add_middleware(StructuredLoggingMiddleware)
    app.include_router(router)

    @app.exception_handler(RequestValidationError)
    async def _request_invalid(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": "invalid request", "errors": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(ValidationError)
    async def _invalid(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": exc.message})

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": exc.message})

    @app.exception_handler(ProviderError)
    async def _unavailable(request: Request, exc: ProviderError) -> JSONResponse:
        logger.error("api_backend_unavailable", path=request.url.path, error=exc.message)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "service temporarily unavailable"},
        )

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
