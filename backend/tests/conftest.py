from __future__ import annotations

import os
import tempfile
from typing import Iterator

_BOOTSTRAP_DIR = tempfile.mkdtemp(prefix="pushdeploy-tests-")

# Settings は import 時に必須の環境変数を検証するため、パッケージの import より前に設定する。
os.environ.setdefault("GITHUB_CLIENT_ID", "test-client-id")
os.environ.setdefault("GITHUB_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("HOST", "https://deploy.example.com")
os.environ.setdefault("GITHUB_TOKEN_PATH", os.path.join(_BOOTSTRAP_DIR, "github_token.json"))
os.environ.setdefault("SCRIPTS_DIR", os.path.join(_BOOTSTRAP_DIR, "scripts"))

import pytest  # noqa: E402
from hypothesis import settings  # noqa: E402

from pushdeploy import config as app_config  # noqa: E402
from pushdeploy.api import auth as auth_api  # noqa: E402
from pushdeploy.api import repos as repos_api  # noqa: E402
from pushdeploy.api import scripts as scripts_api  # noqa: E402
from pushdeploy.main import app  # noqa: E402

_DEFAULT_MAX_EXAMPLES = int(os.getenv("HYPOTHESIS_MAX_EXAMPLES", "25"))

# サブプロセスやファイル I/O を伴うため、デッドラインを無効化してフレークを防ぐ。
if "HYPOTHESIS_PROFILE" not in os.environ:
    try:
        settings.register_profile(
            "ci",
            settings(
                deadline=None,
                max_examples=_DEFAULT_MAX_EXAMPLES,
            ),
        )
    except ValueError:
        # プロファイルが既に存在する場合は無視して既定プロファイルを読み込む
        pass
    settings.load_profile("ci")


def _clear_singletons() -> None:
    auth_api.get_credential_store.cache_clear()
    auth_api.get_oauth_service.cache_clear()
    repos_api.get_github_client.cache_clear()
    scripts_api.get_script_registry.cache_clear()
    scripts_api.get_deployment_executor.cache_clear()


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch) -> Iterator[None]:
    """
    テストごとにトークンファイルとスクリプトルートを tmp_path へ向け、
    lru_cache のシングルトンと依存関係の上書きをリセットする。
    """
    scripts_dir = tmp_path / "scripts"
    scripts_dir.mkdir()
    monkeypatch.setattr(app_config.settings, "scripts_dir", str(scripts_dir))
    monkeypatch.setattr(app_config.settings, "github_token_path", str(tmp_path / "github_token.json"))
    monkeypatch.setattr(app_config.settings, "github_webhook_secret", "")
    monkeypatch.setattr(app_config.settings, "token_encryption_key", "")
    monkeypatch.setattr(app_config.settings, "github_api_url", "https://api.github.test")
    monkeypatch.setattr(app_config.settings, "github_web_url", "https://github.test")

    _clear_singletons()
    app.dependency_overrides.clear()
    yield
    app.dependency_overrides.clear()
    _clear_singletons()


@pytest.fixture()
def scripts_root(tmp_path):
    return tmp_path / "scripts"


@pytest.fixture()
def token_path(tmp_path):
    return tmp_path / "github_token.json"
