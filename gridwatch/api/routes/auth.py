from __future__ import annotations

from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.security import OAuth2PasswordRequestForm

from gridwatch.api.deps import ReadOperator, authenticate_operator, get_settings
from gridwatch.core.config import Settings
from gridwatch.core.security import create_access_token
from gridwatch.schemas.auth import Operator, Token

router = APIRouter(prefix="/auth")


@router.post("/token", response_model=Token)
def issue_token(
    response: Response,
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    settings: Annotated[Settings, Depends(get_settings)],
) -> Token:
    operator = authenticate_operator(
        username=form_data.username, password=form_data.password, settings=settings
    )
    if operator is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    lifetime = timedelta(minutes=settings.access_token_expire_minutes)
    token = create_access_token(
        subject=operator.username,
        scopes=operator.scopes,
        settings=settings,
        expires_delta=lifetime,
    )

    response.headers["Cache-Control"] = "no-store"
    response.headers["Pragma"] = "no-cache"
    return Token(
        access_token=token,
        expires_in=int(lifetime.total_seconds()),
        scope=" ".join(operator.scopes),
    )


@router.get("/me", response_model=Operator)
def read_operator(operator: ReadOperator) -> Operator:
    return operator
