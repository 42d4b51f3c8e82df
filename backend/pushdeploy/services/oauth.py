"""GitHub OAuth 認可コードフローを扱うサービス。"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from ..config import settings
from .credentials import DEFAULT_TENANT
from .errors import PushDeployError

logger = logging.getLogger(__name__)

OAUTH_SCOPES = ["repo", "read:org", "admin:repo_hook"]


class OAuthError(PushDeployError):
    """認可コード交換の失敗。"""

    pass


class OAuthStateMismatchError(OAuthError):
    """state が未発行または期限切れ。"""

    pass


class OAuthProviderUnavailableError(OAuthError):
    """GitHub のトークンエンドポイントに到達できない。"""

    pass


@dataclass
class OAuthState:
    """state に紐づくテナントと有効期限。"""

    tenant: str
    expires_at: datetime


class GitHubOAuthService:
    """GitHub OAuth App の認可 URL 生成とトークン交換を行う。"""

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        state_ttl_seconds: Optional[int] = None,
    ) -> None:
        self.client_id = client_id or settings.github_client_id
        self._client_secret = client_secret or settings.github_client_secret
        self.redirect_uri = redirect_uri or settings.oauth_redirect_uri
        self._state_ttl = timedelta(seconds=state_ttl_seconds or settings.oauth_state_ttl_seconds)
        self._states: Dict[str, OAuthState] = {}

    @property
    def authorize_url(self) -> str:
        return f"{settings.github_web_url}/login/oauth/authorize"

    @property
    def token_url(self) -> str:
        return f"{settings.github_web_url}/login/oauth/access_token"

    def build_authorization_url(self, tenant: str = DEFAULT_TENANT) -> str:
        """state を発行し、GitHub の認可 URL を返す。"""
        self._purge_expired()
        state = secrets.token_urlsafe(24)
        self._states[state] = OAuthState(
            tenant=tenant, expires_at=datetime.now(timezone.utc) + self._state_ttl
        )
        query = urlencode(
            {
                "client_id": self.client_id,
                "scope": ",".join(OAUTH_SCOPES),
                "redirect_uri": self.redirect_uri,
                "state": state,
            }
        )
        return f"{self.authorize_url}?{query}"

    def consume_state(self, state: str) -> str:
        """state を一度だけ消費し、紐づくテナントを返す。"""
        self._purge_expired()
        record = self._states.pop(state, None)
        if record is None:
            raise OAuthStateMismatchError("OAuth state が一致しないか期限切れです")
        return record.tenant

    async def exchange_code(self, code: str) -> Dict[str, Any]:
        """認可コードをアクセストークンに交換し、レスポンス全体を返す。"""
        if not code:
            raise OAuthError("認可コードがありません")

        try:
            response = await self._send_token_request(
                {
                    "client_id": self.client_id,
                    "client_secret": self._client_secret,
                    "code": code,
                    "redirect_uri": self.redirect_uri,
                }
            )
        except httpx.HTTPError as exc:
            logger.error("GitHub token endpoint unreachable: %s", exc)
            raise OAuthProviderUnavailableError("GitHub のトークンエンドポイントに接続できません") from exc

        try:
            token_data = response.json()
        except ValueError as exc:
            raise OAuthError(
                f"トークンエンドポイントの応答形式が不正です (status={response.status_code})"
            ) from exc

        if not response.is_success or not isinstance(token_data, dict):
            logger.error(
                "GitHub OAuth callback: token endpoint responded with status %s", response.status_code
            )
            raise OAuthError("アクセストークンの取得に失敗しました")

        if token_data.get("error"):
            logger.error("GitHub OAuth callback: Error from GitHub: %s", token_data.get("error"))
            raise OAuthError(
                token_data.get("error_description") or "Failed to obtain access token"
            )

        if not token_data.get("access_token"):
            raise OAuthError("トークン応答に access_token が含まれていません")

        logger.info("GitHub access token obtained successfully.")
        return token_data

    async def _send_token_request(self, data: dict) -> httpx.Response:
        """トークンエンドポイントへリクエストする。"""
        async with httpx.AsyncClient(timeout=settings.github_request_timeout_seconds) as client:
            return await client.post(
                self.token_url,
                json=data,
                headers={"Accept": "application/json"},
            )

    def _purge_expired(self) -> None:
        now = datetime.now(timezone.utc)
        for key in [k for k, v in self._states.items() if v.expires_at <= now]:
            self._states.pop(key, None)
