"""Repository identity and name-safety helpers."""

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator

_UNSAFE_SEGMENT_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")
_RESERVED_SEGMENTS = frozenset({"", ".", ".."})
# git check-ref-format: no control characters, space, ~ ^ : ? * [ or backslash
_BRANCH_FORBIDDEN_CHARS = re.compile(r"[\x00-\x20\x7f~^:?*\[\\]")


def sanitize_path_segment(value: str) -> str:
    """
    Make a repository owner/name safe to use as one filesystem path segment.

    Characters outside ``[A-Za-z0-9_.-]`` are replaced with hyphens; dots
    are kept, so ``.github`` and ``github`` stay distinct. Only ``.`` and
    ``..`` are rejected, which is what keeps a segment inside the scripts
    root. GitHub names already satisfy this, so real repositories map to
    themselves.
    """
    normalized = _UNSAFE_SEGMENT_CHARS.sub("-", (value or "").strip())
    if normalized in _RESERVED_SEGMENTS:
        raise ValueError(f"'{value}' cannot be used as a path segment")
    return normalized


def validate_branch_name(branch: str) -> str:
    """
    Return ``branch`` if git would accept it as a branch name.

    Follows ``git check-ref-format``. A leading ``-`` is rejected as well so
    the name can never be read as an option.
    """
    if not branch or branch == "@" or _BRANCH_FORBIDDEN_CHARS.search(branch):
        raise ValueError(f"Invalid branch name: {branch!r}")
    if branch.startswith(("-", "/")) or branch.endswith(("/", ".")):
        raise ValueError(f"Invalid branch name: {branch!r}")
    if ".." in branch or "//" in branch or "@{" in branch:
        raise ValueError(f"Invalid branch name: {branch!r}")
    for component in branch.split("/"):
        if component.startswith(".") or component.endswith(".lock"):
            raise ValueError(f"Invalid branch name: {branch!r}")
    return branch


class RepositoryIdentity(BaseModel):
    """(owner, name) pair identifying a remote repository."""

    model_config = ConfigDict(frozen=True)

    owner: str = Field(..., description="Repository owner login (user or organization)")
    name: str = Field(..., description="Repository name")

    @field_validator("owner", "name")
    @classmethod
    def validate_segment(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        v = v.strip()
        sanitize_path_segment(v)
        return v

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def slug(self) -> str:
        """``<owner>_<name>`` with both halves sanitized; base name for on-disk state."""
        return f"{sanitize_path_segment(self.owner)}_{sanitize_path_segment(self.name)}"

    def __str__(self) -> str:
        return self.full_name
