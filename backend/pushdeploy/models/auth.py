"""Authorization models."""

from pydantic import BaseModel, ConfigDict, Field


class AuthStatusResponse(BaseModel):
    """Whether a GitHub token is available. Never carries the token itself."""

    model_config = ConfigDict(populate_by_name=True)

    is_authorized: bool = Field(..., alias="isAuthorized")


class ReauthorizeResponse(BaseModel):
    """Response after the stored token has been cleared."""

    message: str = "Reauthorization ready."
