from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.backend.api.v1.routes_cases import router as cases_router_v1
from src.backend.api.v1.routes_doctor import router as doctor_router_v1
from src.backend.api.v1.routes_intake import router as intake_router_v1
from src.backend.api.v1.routes_portal import router as portal_router_v1
from src.backend.api.v1.routes_system import router as system_router_v1
from src.backend.config import settings
from src.backend.infra.db.bootstrap import init_sql_repositories
from src.backend.request_context import get_request_id

app = FastAPI(title="Dental Case Intake API")


@app.on_event("startup")
async def on_startup() -> None:
    """Application startup hook.

    When USE_SQL_REPOS is enabled and a DATABASE_URL is configured, this will
    initialize SQL-backed repositories for cases and their timeline, contact
    and note logs. In other environments (tests, local dev without a
    database), this is a no-op and the in-memory repositories remain active.
    """

    init_sql_repositories()


def _request_id_for(request: Request) -> str:
    return request.headers.get("X-Request-ID") or get_request_id() or uuid4().hex


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    request_id = _request_id_for(request)
    headers = dict(exc.headers or {})
    headers["X-Request-ID"] = request_id
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "request_id": request_id},
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    request_id = _request_id_for(request)
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(exc.errors()), "request_id": request_id},
        headers={"X-Request-ID": request_id},
    )


# CORS configuration – permissive by default for development. Tighten via
# CORS_ALLOW_ORIGINS in production deployments.
allow_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()] or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


@app.get("/health", tags=["system"])
async def health_check() -> dict:
    """Basic liveness probe for the API root."""
    return {"status": "ok"}


# Versioned API routers
app.include_router(system_router_v1, prefix="/api/v1")
app.include_router(intake_router_v1, prefix="/api/v1")
app.include_router(cases_router_v1, prefix="/api/v1")
app.include_router(doctor_router_v1, prefix="/api/v1")
app.include_router(portal_router_v1, prefix="/api/v1")
