"""
api/main.py -- FastAPI application entry point for RoleGate.

Exposes the authentication core over HTTP Basic so the policy can be checked
end to end with any HTTP client:

  GET /       public
  GET /user   ROLE_USER or ROLE_ADMIN
  GET /admin  ROLE_ADMIN
  GET /me     any authenticated principal (falls through to the default entry)

Run with:  uvicorn api.main:app --reload

Lifespan handles startup (store, seed, policy, resolver) and shutdown (close
the store) symmetrically.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse, PrincipalResponse, WelcomeResponse
from auth.dependencies import authorize
from auth.errors import StoreUnavailable
from auth.models import Principal
from auth.policy import load_policy
from auth.resolver import PrincipalResolver
from auth.seed import configured_accounts, seed_identities
from auth.store import IdentityStore
from core.config import LOG_DATEFMT, LOG_FORMAT, get_settings

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format=LOG_FORMAT,
    datefmt=LOG_DATEFMT,
)
logger = logging.getLogger("rolegate.api")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Policy first -- a malformed policy file (or a role name without the
         ROLE_ prefix) must stop startup before anything touches the database.
      2. Store second, then seeding. InvalidRoleName from the seed is fatal.
      3. Resolver last -- it wraps the store.
    """
    settings = get_settings()
    logger.info("RoleGate API starting up")
    app.state.policy = load_policy(settings.policy_file)
    logger.info("Access policy loaded (%d entries)", len(app.state.policy.entries))

    app.state.store = IdentityStore(settings.database_url)
    accounts = configured_accounts(settings.seed_file, settings.seed_sample_users)
    if accounts:
        seed_identities(app.state.store, accounts)
    app.state.resolver = PrincipalResolver(app.state.store)
    logger.info("Identity store initialized (%d users)", app.state.store.count_users())

    yield

    app.state.store.close()
    logger.info("RoleGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="RoleGate API",
    description="Credential and role based access control over HTTP Basic.",
    version="0.1.0",
    lifespan=lifespan,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@app.get("/", response_model=WelcomeResponse)
async def home(principal: Principal | None = Depends(authorize)) -> WelcomeResponse:
    return WelcomeResponse(
        message="Welcome to the home page!",
        username=principal.username if principal else None,
    )


@app.get("/user", response_model=WelcomeResponse)
async def user_page(principal: Principal = Depends(authorize)) -> WelcomeResponse:
    return WelcomeResponse(message="Welcome User!", username=principal.username)


@app.get("/admin", response_model=WelcomeResponse)
async def admin_page(principal: Principal = Depends(authorize)) -> WelcomeResponse:
    return WelcomeResponse(message="Welcome Admin!", username=principal.username)


@app.get("/me", response_model=PrincipalResponse)
async def me(principal: Principal = Depends(authorize)) -> PrincipalResponse:
    """Return the caller's resolved identity."""
    return PrincipalResponse(username=principal.username, roles=sorted(principal.roles))


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    """Return 503 when the identity store cannot be reached.

    The core does not retry; Retry-After hints that the client may.
    """
    logger.error("Identity store unavailable on %s %s: %s", request.method, request.url.path, exc)
    response = JSONResponse(
        status_code=503,
        content=ErrorResponse(
            error=ErrorDetail(code="store_unavailable", message="Service temporarily unavailable.")
        ).model_dump(),
    )
    response.headers["Retry-After"] = "5"
    return response


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Headers are carried over so 401 responses keep their WWW-Authenticate
    challenge.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is logged, never returned: stack traces in responses
    leak implementation details.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )
