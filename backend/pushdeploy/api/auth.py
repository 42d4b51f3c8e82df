"""GitHub 認可 API エンドポイント。"""

import logging
from functools import lru_cache
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse

from ..config import settings
from ..models.auth import AuthStatusResponse, ReauthorizeResponse
from ..models.repository import sanitize_path_segment
from ..services.credentials import DEFAULT_TENANT, CredentialStore
from ..services.errors import ValidationError
from ..services.oauth import GitHubOAuthService, OAuthError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


@lru_cache(maxsize=1)
def get_credential_store() -> CredentialStore:
    """CredentialStore のシングルトンを返す。"""
    return CredentialStore()


@lru_cache(maxsize=1)
def get_oauth_service() -> GitHubOAuthService:
    """GitHubOAuthService のシングルトンを返す。"""
    return GitHubOAuthService()


def resolve_tenant(org: Optional[str]) -> str:
    """org 指定をテナント名に変換する。未指定なら既定テナント、使えない名前は ValidationError。"""
    if not org:
        return DEFAULT_TENANT
    try:
        sanitize_path_segment(org)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    return org


@router.get("/auth/github")
async def start_authorization(
    oauth_service: Annotated[GitHubOAuthService, Depends(get_oauth_service)],
    org: Optional[str] = Query(default=None, description="org 単位でトークンを保持する場合の organization"),
) -> RedirectResponse:
    """GitHub の認可ページへリダイレクトする。"""
    return RedirectResponse(
        oauth_service.build_authorization_url(resolve_tenant(org)),
        status_code=status.HTTP_302_FOUND,
    )


@router.get("/github/callback")
async def github_callback(
    oauth_service: Annotated[GitHubOAuthService, Depends(get_oauth_service)],
    credential_store: Annotated[CredentialStore, Depends(get_credential_store)],
    code: Optional[str] = Query(default=None, description="認可コード"),
    state: Optional[str] = Query(default=None, description="認可開始時の state"),
):
    """認可コードをトークンに交換して保存し、ダッシュボードへ戻す。"""
    if not code:
        logger.error("GitHub OAuth callback: Missing code parameter.")
        return PlainTextResponse("Missing code parameter.", status_code=status.HTTP_400_BAD_REQUEST)

    tenant = DEFAULT_TENANT
    if state:
        tenant = oauth_service.consume_state(state)
    else:
        logger.warning("GitHub OAuth callback without state; storing token for the default tenant")

    try:
        token_data = await oauth_service.exchange_code(code)
        await credential_store.set_token(tenant, token_data)
    except (OAuthError, OSError) as exc:
        logger.error("Error during GitHub OAuth callback: %s", exc)
        return PlainTextResponse(
            "Authorization failed. Please try again.",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    return RedirectResponse(settings.dashboard_url, status_code=status.HTTP_302_FOUND)


@router.post("/reauthorize", response_model=ReauthorizeResponse)
async def reauthorize(
    credential_store: Annotated[CredentialStore, Depends(get_credential_store)],
    org: Optional[str] = Query(default=None),
):
    """保存済みトークンを破棄する。トークンが無くても成功を返す。"""
    try:
        await credential_store.clear_token(resolve_tenant(org))
    except OSError as exc:
        logger.error("Failed to clear access token: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error_code": "INTERNAL_ERROR",
                "message": "Failed to clear access token.",
                "detail": "",
            },
        )
    return ReauthorizeResponse()


@router.get("/auth-status", response_model=AuthStatusResponse)
async def auth_status(
    credential_store: Annotated[CredentialStore, Depends(get_credential_store)],
    org: Optional[str] = Query(default=None),
) -> AuthStatusResponse:
    """トークンの有無のみを返す (トークン自体は返さない)。"""
    is_authorized = await credential_store.is_authorized(resolve_tenant(org))
    return AuthStatusResponse(is_authorized=is_authorized)
