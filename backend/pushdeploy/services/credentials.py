"""GitHub アクセストークンの保持サービス。"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from ..config import settings
from ..models.repository import sanitize_path_segment

logger = logging.getLogger(__name__)

DEFAULT_TENANT = "default"


class CredentialStore:
    """
    テナント (既定ユーザーまたは organization) ごとに OAuth トークンを 1 つ保持する。

    メモリ上のキャッシュと JSON ファイルの 2 層で構成し、ファイルからの読み込みは
    キャッシュ充填のみ (マージはしない)。書き込みと充填は単一の asyncio.Lock で直列化する。
    """

    def __init__(
        self,
        token_path: Optional[str] = None,
        encryption_key: Optional[str] = None,
    ) -> None:
        self._token_path = Path(token_path or settings.github_token_path)
        key = settings.token_encryption_key if encryption_key is None else encryption_key
        self._cipher: Optional[Fernet] = Fernet(key.encode()) if key else None
        self._tokens: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    def path_for(self, tenant: str = DEFAULT_TENANT) -> Path:
        """テナントのトークンファイルパスを返す。org テナントは既定ファイルの隣に置く。"""
        if tenant == DEFAULT_TENANT:
            return self._token_path
        safe = sanitize_path_segment(tenant)
        return self._token_path.with_name(
            f"{self._token_path.stem}.{safe}{self._token_path.suffix}"
        )

    async def get_token(self, tenant: str = DEFAULT_TENANT) -> Optional[str]:
        """アクセストークン文字列を返す。未保存・読み込み失敗時は None。"""
        data = await self.get_token_data(tenant)
        if not data:
            return None
        token = data.get("access_token")
        return token if isinstance(token, str) and token else None

    async def get_token_data(self, tenant: str = DEFAULT_TENANT) -> Optional[Dict[str, Any]]:
        """
        保存済みのトークンペイロード全体を返す。

        優先度: メモリキャッシュ > 永続ファイル (再起動後の初回参照で遅延読み込み)
        """
        cached = self._tokens.get(tenant)
        if cached is not None:
            return cached

        async with self._lock:
            # ロック待ちの間に他のリクエストが充填している可能性がある
            cached = self._tokens.get(tenant)
            if cached is not None:
                return cached

            data = self._load(tenant)
            if data is not None:
                self._tokens[tenant] = data
            return data

    async def set_token(self, tenant: str, token_data: Dict[str, Any]) -> None:
        """トークンペイロードをメモリとファイルの両方に保存する (上書き)。"""
        if not isinstance(token_data, dict) or not token_data.get("access_token"):
            raise ValueError("token_data must contain an access_token")

        async with self._lock:
            self._write(tenant, token_data)
            self._tokens[tenant] = dict(token_data)
        logger.info("Stored GitHub token for tenant %s", tenant)

    async def clear_token(self, tenant: str = DEFAULT_TENANT) -> None:
        """メモリとファイルのトークンを削除する。存在しない場合もエラーにしない。"""
        async with self._lock:
            self._tokens.pop(tenant, None)
            path = self.path_for(tenant)
            try:
                path.unlink()
                logger.info("Access token cleared for tenant %s. Ready for reauthorization.", tenant)
            except FileNotFoundError:
                logger.info("Token file %s not found. Proceeding with reauthorization.", path)

    async def is_authorized(self, tenant: str = DEFAULT_TENANT) -> bool:
        return await self.get_token(tenant) is not None

    async def get_token_for_owner(self, owner: str) -> Optional[str]:
        """owner 用の org トークンがあればそれを、無ければ既定テナントのトークンを返す。"""
        try:
            token = await self.get_token(owner)
        except ValueError:
            token = None
        if token:
            return token
        return await self.get_token(DEFAULT_TENANT)

    def _load(self, tenant: str) -> Optional[Dict[str, Any]]:
        """トークンファイルを読み込む。失敗は記録のみで None を返す。"""
        path = self.path_for(tenant)
        if not path.exists():
            return None
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            data = self._decode(raw)
        except (OSError, ValueError, InvalidToken) as exc:
            logger.error("Failed to load access token from %s: %s", path, exc)
            return None

        if not isinstance(data, dict) or not data.get("access_token"):
            logger.error("Token file %s does not contain an access_token", path)
            return None

        logger.info("Loaded access token from %s", path)
        return data

    def _write(self, tenant: str, token_data: Dict[str, Any]) -> None:
        """一時ファイル経由で置き換え、権限を 600 にする。"""
        path = self.path_for(tenant)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.tmp")
        tmp_path.write_text(json.dumps(self._encode(token_data), indent=2), encoding="utf-8")
        tmp_path.chmod(0o600)
        os.replace(tmp_path, path)
        logger.info("Token response saved to %s", path)

    def _encode(self, token_data: Dict[str, Any]) -> Dict[str, Any]:
        if self._cipher is None:
            return token_data
        blob = self._cipher.encrypt(json.dumps(token_data).encode("utf-8")).decode("utf-8")
        return {"type": "encrypted", "algo": "fernet", "blob": blob}

    def _decode(self, raw: Any) -> Any:
        if not (isinstance(raw, dict) and raw.get("type") == "encrypted"):
            return raw
        if self._cipher is None:
            raise ValueError("token file is encrypted but TOKEN_ENCRYPTION_KEY is not set")
        blob = raw.get("blob")
        if not isinstance(blob, str):
            raise ValueError("encrypted token file has no blob")
        return json.loads(self._cipher.decrypt(blob.encode("utf-8")).decode("utf-8"))
