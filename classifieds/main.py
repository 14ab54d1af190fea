import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from classifieds.core.config import Settings, get_settings
from classifieds.core.database import Database
from classifieds.core.errors import DomainError
from classifieds.routers import auth, chats, health, listings, users
from classifieds.services.media import MediaStore

logger = logging.getLogger(__name__)


def _error(status_code: int, error: str, message: str | None = None) -> JSONResponse:
    body = {"error": error}
    if message:
        body["message"] = message
    return JSONResponse(status_code=status_code, content=body)


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError):
        return _error(exc.status_code, exc.error, exc.message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = None
        if errors:
            loc = ".".join(str(part) for part in errors[0].get("loc", ()) if part not in ("body", "query", "path"))
            message = f"{loc}: {errors[0].get('msg')}" if loc else errors[0].get("msg")
        return _error(status.HTTP_400_BAD_REQUEST, "Validation Error", message)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Internal Server Error",
            "An unexpected error occurred",
        )


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    database = Database(settings.database_url)
    media = MediaStore(
        settings.media_root,
        url_prefix=settings.media_url,
        allowed_extensions=settings.allowed_image_extensions,
        max_bytes=settings.max_upload_bytes,
    )
    # StaticFiles checks the directory when mounted
    media.ensure_root()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.init()
        logger.info("%s started (%s)", settings.app_name, settings.app_env)
        try:
            yield
        finally:
            database.dispose()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.state.media = media

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _install_error_handlers(app)

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(listings.router)
    app.include_router(users.router)
    app.include_router(chats.router)

    app.mount(
        settings.media_url,
        StaticFiles(directory=settings.media_root),
        name="images",
    )

    @app.get("/")
    def root():
        return {"message": f"{settings.app_name} backend is running"}

    return app


def run() -> None:
    import uvicorn

    uvicorn.run("classifieds.main:create_app", factory=True, host="0.0.0.0", port=8080)
