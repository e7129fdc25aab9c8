"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

Credentials arrive as HTTP Basic. The resolver and policy live on app.state
(wired in api/main.py lifespan) so tests can swap in isolated instances.

try_get_principal() is the soft variant: no credentials -> None. Credentials
that fail verification are always a 401, even on a public path, and the body
is identical whether the username is unknown, disabled, or the password is
wrong.

authorize() runs the policy against the request path and maps verdicts to
status codes:
  ALLOW            -> handler runs
  UNAUTHENTICATED  -> 401 + WWW-Authenticate: Basic (client should send credentials)
  FORBIDDEN        -> 403 (credentials were fine, the roles are not)

Layer rule: no imports from core/. auth/dependencies.py may import from
fastapi because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from auth.models import Principal
from auth.policy import AccessPolicy, Verdict
from auth.resolver import PrincipalResolver

REALM = "rolegate"

_basic = HTTPBasic(realm=REALM, auto_error=False)

_CHALLENGE = {"WWW-Authenticate": f'Basic realm="{REALM}"'}


def try_get_principal(
    request: Request,
    credentials: HTTPBasicCredentials | None = Depends(_basic),
) -> Principal | None:
    """Return the Principal for the supplied credentials, None if none were supplied.

    Raises HTTP 401 if credentials were supplied but do not authenticate.
    """
    if credentials is None:
        return None
    resolver: PrincipalResolver = request.app.state.resolver
    principal = resolver.authenticate(credentials.username, credentials.password)
    if principal is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "bad_credentials", "message": "Invalid username or password."},
            headers=_CHALLENGE,
        )
    return principal


def authorize(
    request: Request,
    principal: Principal | None = Depends(try_get_principal),
) -> Principal | None:
    """Enforce the access policy for the current request path.

    Use as a FastAPI dependency:
        @app.get("/admin")
        async def route(principal: Principal = Depends(authorize)): ...
    """
    policy: AccessPolicy = request.app.state.policy
    verdict = policy.decide(principal, request.url.path)
    if verdict is Verdict.UNAUTHENTICATED:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers=_CHALLENGE,
        )
    if verdict is Verdict.FORBIDDEN:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "You do not have access to this resource."},
        )
    return principal
