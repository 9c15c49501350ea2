from datetime import timedelta

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from todo_api.core.config import Settings, get_settings
from todo_api.core.database import get_db
from todo_api.core.errors import UnauthorizedError
from todo_api.core.security import TokenSigner, get_token_signer
from todo_api.schemas.users import AuthOut, LoginIn, RefreshIn, UserCreate, UserOut
from todo_api.services import session_service, user_service
from todo_api.services.session_service import IssuedTokens

router = APIRouter(prefix="/api/auth", tags=["auth"])

REFRESH_COOKIE_PATH = "/api/auth"


def _auth_response(
    tokens: IssuedTokens,
    settings: Settings,
    status_code: int = status.HTTP_200_OK,
) -> JSONResponse:
    body = AuthOut(
        user=UserOut.model_validate(tokens.user),
        access_token=tokens.access_token,
    )
    resp = JSONResponse(body.model_dump(mode="json"), status_code=status_code)
    resp.headers["Cache-Control"] = "no-store"
    resp.set_cookie(
        key=settings.refresh_cookie_name,
        value=tokens.refresh_token,
        httponly=True,
        secure=bool(settings.refresh_cookie_secure),
        samesite="lax",
        max_age=settings.refresh_max_age,
        path=REFRESH_COOKIE_PATH,
    )
    return resp


def _presented_refresh_token(
    request: Request, payload: RefreshIn | None, settings: Settings
) -> str:
    if payload and payload.refresh_token and payload.refresh_token.strip():
        return payload.refresh_token.strip()
    cookie_token = request.cookies.get(settings.refresh_cookie_name)
    if not cookie_token:
        raise UnauthorizedError()
    return cookie_token


def _refresh_ttl(settings: Settings) -> timedelta:
    return timedelta(days=settings.refresh_days)


@router.post("/register", response_model=AuthOut, status_code=status.HTTP_201_CREATED)
def register(
    payload: UserCreate,
    db: Session = Depends(get_db),
    signer: TokenSigner = Depends(get_token_signer),
    settings: Settings = Depends(get_settings),
):
    user = user_service.register(db, payload.email, payload.password)
    tokens = session_service.issue_tokens(
        db, signer, user, refresh_ttl=_refresh_ttl(settings)
    )
    return _auth_response(tokens, settings, status.HTTP_201_CREATED)


@router.post("/login", response_model=AuthOut)
def login(
    payload: LoginIn,
    db: Session = Depends(get_db),
    signer: TokenSigner = Depends(get_token_signer),
    settings: Settings = Depends(get_settings),
):
    tokens = session_service.login(
        db,
        signer,
        payload.email,
        payload.password,
        refresh_ttl=_refresh_ttl(settings),
    )
    return _auth_response(tokens, settings)


@router.post("/refresh", response_model=AuthOut)
def refresh(
    request: Request,
    payload: RefreshIn | None = None,
    db: Session = Depends(get_db),
    signer: TokenSigner = Depends(get_token_signer),
    settings: Settings = Depends(get_settings),
):
    raw_token = _presented_refresh_token(request, payload, settings)
    tokens = session_service.refresh(
        db, signer, raw_token, refresh_ttl=_refresh_ttl(settings)
    )
    return _auth_response(tokens, settings)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    request: Request,
    payload: RefreshIn | None = None,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Response:
    raw_token = _presented_refresh_token(request, payload, settings)
    session_service.logout(db, raw_token)

    resp = Response(status_code=status.HTTP_204_NO_CONTENT)
    resp.headers["Cache-Control"] = "no-store"
    resp.delete_cookie(key=settings.refresh_cookie_name, path=REFRESH_COOKIE_PATH)
    return resp
