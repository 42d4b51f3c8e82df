# Data models package

from .auth import AuthStatusResponse, ReauthorizeResponse
from .deploy import PushEvent, RunState, branch_from_ref
from .repository import RepositoryIdentity, sanitize_path_segment, validate_branch_name
from .scripts import (
    DeploymentConfig,
    RunScriptRequest,
    RunScriptResponse,
    ScriptResponse,
    ScriptSaveRequest,
)

__all__ = [
    "AuthStatusResponse",
    "DeploymentConfig",
    "PushEvent",
    "ReauthorizeResponse",
    "RepositoryIdentity",
    "RunScriptRequest",
    "RunScriptResponse",
    "RunState",
    "ScriptResponse",
    "ScriptSaveRequest",
    "branch_from_ref",
    "sanitize_path_segment",
    "validate_branch_name",
]
