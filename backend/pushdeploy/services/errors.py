"""Error taxonomy shared by services and HTTP handlers."""

from typing import Optional


class PushDeployError(Exception):
    """Base class for all handled service errors."""

    pass


class AuthError(PushDeployError):
    """No usable GitHub token, or an inbound request failed authentication."""

    pass


class ValidationError(PushDeployError):
    """Malformed request input. The caller must fix it; never retried."""

    pass


class NotFoundError(PushDeployError):
    """A script, config or hook that a request depends on does not exist."""

    pass


class ProviderError(PushDeployError):
    """GitHub answered with a non-2xx status or could not be reached."""

    def __init__(self, status: int, body: str = "", message: Optional[str] = None) -> None:
        self.status = status
        self.body = body
        super().__init__(message or f"GitHub API responded with status {status}")


class ProviderUnauthorizedError(ProviderError):
    """GitHub rejected the stored token (HTTP 401); the operator must reauthorize."""

    pass


class SyncError(PushDeployError):
    """git clone/pull exited non-zero."""

    def __init__(self, message: str, exit_code: Optional[int] = None, output: str = "") -> None:
        self.exit_code = exit_code
        self.output = output
        super().__init__(message)


class ScriptError(PushDeployError):
    """The deployment script exited non-zero."""

    def __init__(self, message: str, exit_code: Optional[int] = None, output: str = "") -> None:
        self.exit_code = exit_code
        self.output = output
        super().__init__(message)
