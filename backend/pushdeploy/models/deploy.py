"""Deployment run state and push-event payload models."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .repository import RepositoryIdentity, sanitize_path_segment

BRANCH_REF_PREFIX = "refs/heads/"


class RunState(str, Enum):
    """Lifecycle of a single deployment run."""

    PENDING = "pending"
    SYNCING = "syncing"
    SYNC_FAILED = "sync_failed"
    SYNCED = "synced"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    SCRIPT_FAILED = "script_failed"
    SCRIPT_NOT_FOUND = "script_not_found"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {
        RunState.SYNC_FAILED,
        RunState.SUCCEEDED,
        RunState.SCRIPT_FAILED,
        RunState.SCRIPT_NOT_FOUND,
    }
)


def branch_from_ref(ref: str) -> str:
    """
    Extract the branch name from a ``refs/heads/<branch>`` ref.

    Everything after the ``refs/heads/`` prefix is the branch, so
    ``refs/heads/release/v2`` yields ``release/v2``.
    """
    if not ref or not ref.startswith(BRANCH_REF_PREFIX):
        raise ValueError(f"ref must have the form {BRANCH_REF_PREFIX}<branch>")
    branch = ref[len(BRANCH_REF_PREFIX):]
    if not branch:
        raise ValueError("ref does not name a branch")
    return branch


class PushEventOwner(BaseModel):
    model_config = ConfigDict(extra="ignore")

    login: str

    @field_validator("login")
    @classmethod
    def validate_login(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        sanitize_path_segment(v)
        return v.strip()


class PushEventRepository(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    owner: PushEventOwner

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        sanitize_path_segment(v)
        return v.strip()


class PushEvent(BaseModel):
    """The subset of GitHub's push payload the gateway relies on."""

    model_config = ConfigDict(extra="ignore")

    ref: str = Field(..., description="Pushed ref, e.g. refs/heads/main")
    repository: PushEventRepository

    @field_validator("ref")
    @classmethod
    def validate_ref(cls, v: str) -> str:
        branch_from_ref(v)
        return v

    @property
    def branch(self) -> str:
        return branch_from_ref(self.ref)

    @property
    def repository_identity(self) -> RepositoryIdentity:
        return RepositoryIdentity(owner=self.repository.owner.login, name=self.repository.name)
