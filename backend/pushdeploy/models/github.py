"""GitHub proxy request/response models."""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _full_name(name: str, org: Optional[str]) -> str:
    """Turn ``owner/repo``, or a bare ``repo`` when ``org`` is given, into ``owner/repo``."""
    name = (name or "").strip()
    parts = name.split("/")
    if len(parts) == 1 and parts[0] and org:
        return f"{org}/{parts[0]}"
    if len(parts) != 2 or not all(part.strip() for part in parts):
        raise ValueError(f"'{name}' must have the form owner/repo, or be a bare name with org")
    return name


class AddWebhookRequest(BaseModel):
    """
    Attach the deployment webhook to one or more repositories.

    Either ``repoName`` (a single repository) or ``repoNames`` (a batch) is
    given. Bare names are qualified with ``org``.
    """

    model_config = ConfigDict(populate_by_name=True)

    repo_name: Optional[str] = Field(
        default=None, alias="repoName", description="Repository full name (owner/repo)"
    )
    repo_names: Optional[List[str]] = Field(
        default=None, alias="repoNames", description="Repositories to attach the webhook to"
    )
    org: Optional[str] = Field(default=None, description="Owner for bare repository names")

    @field_validator("org")
    @classmethod
    def strip_org(cls, v: Optional[str]) -> Optional[str]:
        v = (v or "").strip()
        return v or None

    @model_validator(mode="after")
    def _qualify_names(self) -> "AddWebhookRequest":
        if (self.repo_name is None) == (self.repo_names is None):
            raise ValueError("Provide exactly one of repoName or repoNames")
        if self.repo_name is not None:
            self.repo_name = _full_name(self.repo_name, self.org)
        else:
            if not self.repo_names:
                raise ValueError("repoNames must not be empty")
            self.repo_names = [_full_name(name, self.org) for name in self.repo_names]
        return self

    @property
    def is_batch(self) -> bool:
        return self.repo_names is not None

    def full_names(self) -> List[str]:
        return list(self.repo_names) if self.is_batch else [self.repo_name]


class WebhookResult(BaseModel):
    """Outcome of attaching the webhook to one repository of a batch."""

    model_config = ConfigDict(populate_by_name=True)

    repo_name: str = Field(..., alias="repoName")
    status: Literal["created", "failed"]
    hook_id: Optional[int] = None
    error: Optional[str] = None
    provider_status: Optional[int] = None


class AddWebhookResponse(BaseModel):
    message: str
    hook_id: int | None = None
    results: List[WebhookResult] = Field(default_factory=list)
