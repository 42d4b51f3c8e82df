"""Script registry and manual deployment models."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ScriptResponse(BaseModel):
    """Stored deployment script for a repository."""

    script: str = Field(default="", description="Shell script body; empty when none is stored")


class ScriptSaveRequest(BaseModel):
    """Request body for saving a deployment script."""

    script: str = Field(..., description="Shell script body. An empty string clears the script.")


class MessageResponse(BaseModel):
    """Generic acknowledgement."""

    message: str


class DeploymentConfig(BaseModel):
    """Structured deployment configuration persisted next to the script file."""

    model_config = ConfigDict(populate_by_name=True)

    script: Optional[str] = Field(default=None, description="Optional script body saved alongside")
    branch: str = Field(..., description="Branch whose pushes trigger a deployment")
    working_dir: str = Field(
        ..., alias="workingDir", description="Directory the repository is checked out into"
    )

    @field_validator("branch", "working_dir")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        """Branch and working directory are mandatory."""
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()


class RunScriptRequest(BaseModel):
    """Request body for a manually triggered deployment."""

    model_config = ConfigDict(populate_by_name=True)

    branch: str = Field(..., description="Branch to sync before running the script")
    working_dir: str = Field(..., alias="workingDir", description="Checkout directory")

    @field_validator("branch", "working_dir")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()


class RunScriptResponse(BaseModel):
    """Result of a successful manual deployment."""

    model_config = ConfigDict(populate_by_name=True)

    message: str
    state: str
    output: str = ""
    exit_code: Optional[int] = Field(default=None, alias="exitCode")
