# Services package

from .credentials import DEFAULT_TENANT, CredentialStore
from .errors import (
    AuthError,
    NotFoundError,
    ProviderError,
    ProviderUnauthorizedError,
    PushDeployError,
    ScriptError,
    SyncError,
    ValidationError,
)
from .executor import DeploymentExecutor, DeploymentRun
from .github import GitHubClient
from .oauth import (
    GitHubOAuthService,
    OAuthError,
    OAuthProviderUnavailableError,
    OAuthStateMismatchError,
)
from .scripts import ScriptRegistry

__all__ = [
    "AuthError",
    "CredentialStore",
    "DEFAULT_TENANT",
    "DeploymentExecutor",
    "DeploymentRun",
    "GitHubClient",
    "GitHubOAuthService",
    "NotFoundError",
    "OAuthError",
    "OAuthProviderUnavailableError",
    "OAuthStateMismatchError",
    "ProviderError",
    "ProviderUnauthorizedError",
    "PushDeployError",
    "ScriptError",
    "ScriptRegistry",
    "SyncError",
    "ValidationError",
]
