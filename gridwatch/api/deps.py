from __future__ import annotations

from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import OAuth2PasswordBearer, SecurityScopes

from gridwatch.core.config import Settings
from gridwatch.core.security import (
    ADMIN_SCOPES,
    CONTROL_SCOPE,
    READ_SCOPE,
    check_admin_credentials,
    decode_access_token,
)
from gridwatch.schemas.auth import Operator
from gridwatch.services.dashboard import DashboardState
from gridwatch.services.monitor import PMUMonitorService

oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl="/api/v1/auth/token",
    scopes={
        READ_SCOPE: "Read operator identity",
        CONTROL_SCOPE: "Start, stop and force polling cycles",
    },
)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_monitor(request: Request) -> PMUMonitorService:
    monitor = getattr(request.app.state, "monitor", None)
    if not isinstance(monitor, PMUMonitorService):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Monitor not initialised",
        )
    return monitor


def get_dashboard(request: Request) -> DashboardState:
    dashboard = getattr(request.app.state, "dashboard", None)
    if not isinstance(dashboard, DashboardState):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Monitor not initialised",
        )
    return dashboard


def authenticate_operator(
    *, username: str, password: str, settings: Settings
) -> Operator | None:
    if not check_admin_credentials(username=username, password=password, settings=settings):
        return None
    return Operator(username=username, scopes=list(ADMIN_SCOPES))


def get_current_operator(
    security_scopes: SecurityScopes,
    token: Annotated[str, Depends(oauth2_scheme)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> Operator:
    authenticate_value = "Bearer"
    if security_scopes.scopes:
        authenticate_value = f'Bearer scope="{security_scopes.scope_str}"'

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": authenticate_value},
    )

    try:
        subject, scopes = decode_access_token(token, settings=settings)
    except (jwt.PyJWTError, ValueError) as e:  # noqa: BLE001 - normalize to 401
        raise credentials_exception from e

    operator = Operator(username=subject, scopes=scopes)
    for scope in security_scopes.scopes:
        if not operator.can(scope):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not enough permissions",
                headers={"WWW-Authenticate": authenticate_value},
            )
    return operator


Monitor = Annotated[PMUMonitorService, Depends(get_monitor)]
Dashboard = Annotated[DashboardState, Depends(get_dashboard)]

ReadOperator = Annotated[Operator, Security(get_current_operator, scopes=[READ_SCOPE])]
ControlOperator = Annotated[Operator, Security(get_current_operator, scopes=[CONTROL_SCOPE])]
