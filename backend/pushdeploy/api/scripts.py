"""Deployment script, configuration and manual trigger endpoints."""

import logging
from functools import lru_cache
from typing import Annotated

from fastapi import APIRouter, Depends

from ..models.repository import RepositoryIdentity
from ..models.scripts import (
    DeploymentConfig,
    MessageResponse,
    RunScriptRequest,
    RunScriptResponse,
    ScriptResponse,
    ScriptSaveRequest,
)
from ..services.credentials import CredentialStore
from ..services.errors import NotFoundError
from ..services.executor import DeploymentExecutor
from ..services.scripts import ScriptRegistry
from .auth import get_credential_store
from .repos import get_repository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/repos/{owner}/{repo}", tags=["scripts"])


@lru_cache(maxsize=1)
def get_script_registry() -> ScriptRegistry:
    """Dependency to get the script registry instance."""
    return ScriptRegistry()


@lru_cache(maxsize=1)
def get_deployment_executor() -> DeploymentExecutor:
    """Dependency to get the deployment executor instance (owns the per-directory locks)."""
    return DeploymentExecutor(get_script_registry())


@router.get("/script", response_model=ScriptResponse)
async def get_script(
    repository: Annotated[RepositoryIdentity, Depends(get_repository)],
    registry: Annotated[ScriptRegistry, Depends(get_script_registry)],
) -> ScriptResponse:
    """Return the stored script; repositories without one get an empty script."""
    return ScriptResponse(script=registry.get_script(repository))


@router.post("/script", response_model=MessageResponse)
async def save_script(
    request: ScriptSaveRequest,
    repository: Annotated[RepositoryIdentity, Depends(get_repository)],
    registry: Annotated[ScriptRegistry, Depends(get_script_registry)],
) -> MessageResponse:
    """Create or overwrite the deployment script."""
    registry.save_script(repository, request.script)
    return MessageResponse(message="Script updated successfully.")


@router.get("/config", response_model=DeploymentConfig)
async def get_config(
    repository: Annotated[RepositoryIdentity, Depends(get_repository)],
    registry: Annotated[ScriptRegistry, Depends(get_script_registry)],
) -> DeploymentConfig:
    config = registry.get_config(repository)
    if config is None:
        raise NotFoundError(f"No deployment configuration for {repository}")
    return config


@router.post("/config", response_model=MessageResponse)
async def save_config(
    config: DeploymentConfig,
    repository: Annotated[RepositoryIdentity, Depends(get_repository)],
    registry: Annotated[ScriptRegistry, Depends(get_script_registry)],
) -> MessageResponse:
    """
    Save the structured deployment configuration.

    ``branch`` and ``workingDir`` are required; a request missing either is
    rejected with 400 before anything is written.
    """
    registry.save_config(repository, config)
    return MessageResponse(message="Configuration saved successfully.")


@router.post("/run-script", response_model=RunScriptResponse)
async def run_script(
    request: RunScriptRequest,
    repository: Annotated[RepositoryIdentity, Depends(get_repository)],
    registry: Annotated[ScriptRegistry, Depends(get_script_registry)],
    executor: Annotated[DeploymentExecutor, Depends(get_deployment_executor)],
    credential_store: Annotated[CredentialStore, Depends(get_credential_store)],
) -> RunScriptResponse:
    """
    Manually trigger a deployment and wait for it to finish.

    Unlike the webhook, this endpoint reports failures through the status
    code: 404 when no script is registered, 500 when the sync or the
    script fails.
    """
    working_dir = registry.resolve_working_dir(request.working_dir)
    token = await credential_store.get_token_for_owner(repository.owner)
    run = executor.create_run(repository, request.branch, working_dir, token=token)

    await executor.execute(run)
    run.raise_for_state()

    return RunScriptResponse(
        message="Script executed successfully.",
        state=run.state.value,
        output=run.output_text,
        exit_code=run.script_exit_code,
    )
