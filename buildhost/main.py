import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from buildhost import __version__
from buildhost.lib.config import settings
from buildhost.lib.errors import BuildhostError
from buildhost.features.health.routes import router as health_router
from buildhost.features.core.routes import router as core_router
from buildhost.features.wharf.routes import router as wharf_router

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Buildhost",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def error_response(status_code: int, *messages: str, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"errors": list(messages)},
        headers=headers,
    )


@app.exception_handler(BuildhostError)
async def buildhost_error_handler(request: Request, exc: BuildhostError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return error_response(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ()) if part not in ("path", "query", "body"))
        messages.append(f"invalid {field or 'request'}: {error.get('msg', 'invalid value')}")
    return error_response(status.HTTP_400_BAD_REQUEST, *messages)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "database error")


app.include_router(health_router, tags=["Health"])
app.include_router(core_router)
app.include_router(wharf_router)
