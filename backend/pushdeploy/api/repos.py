"""GitHub repository and webhook proxy endpoints."""

import logging
from functools import lru_cache
from typing import Annotated, Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import ValidationError as PydanticValidationError

from ..config import settings
from ..models.github import AddWebhookRequest, AddWebhookResponse, WebhookResult
from ..models.repository import RepositoryIdentity
from ..models.scripts import MessageResponse
from ..services.credentials import CredentialStore
from ..services.errors import (
    AuthError,
    ProviderError,
    ProviderUnauthorizedError,
    ValidationError,
)
from ..services.github import GitHubClient
from .auth import get_credential_store, resolve_tenant

logger = logging.getLogger(__name__)

router = APIRouter(tags=["repositories"])


@lru_cache(maxsize=1)
def get_github_client() -> GitHubClient:
    """Dependency to get the GitHub client instance."""
    return GitHubClient()


def get_repository(owner: str, repo: str) -> RepositoryIdentity:
    """Build a RepositoryIdentity from path parameters, rejecting unusable names."""
    try:
        return RepositoryIdentity(owner=owner, name=repo)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid repository {owner}/{repo}") from exc


async def require_repository_token(
    repository: Annotated[RepositoryIdentity, Depends(get_repository)],
    credential_store: Annotated[CredentialStore, Depends(get_credential_store)],
) -> str:
    """Token for the repository owner's organization, falling back to the default one."""
    token = await credential_store.get_token_for_owner(repository.owner)
    if not token:
        raise AuthError("Unauthorized. Please authorize first.")
    return token


async def org_token(credential_store: CredentialStore, org: Optional[str]) -> str:
    """Token stored for ``org``, falling back to the default one. No org means the default token."""
    if org:
        token = await credential_store.get_token_for_owner(resolve_tenant(org))
    else:
        token = await credential_store.get_token()
    if not token:
        raise AuthError("Unauthorized. Please authorize first.")
    return token


@router.get("/repos")
async def list_repos(
    credential_store: Annotated[CredentialStore, Depends(get_credential_store)],
    github: Annotated[GitHubClient, Depends(get_github_client)],
    org: Optional[str] = Query(default=None, description="Organization whose token to use"),
) -> List[Dict[str, Any]]:
    """
    List every repository the authorized user can access.

    Personal repositories are merged with the repositories of each
    organization the user belongs to.
    """
    return await github.list_repos(await org_token(credential_store, org))


@router.get("/orgs/{org}/repos")
async def list_org_repos(
    org: str,
    credential_store: Annotated[CredentialStore, Depends(get_credential_store)],
    github: Annotated[GitHubClient, Depends(get_github_client)],
) -> List[Dict[str, Any]]:
    token = await org_token(credential_store, org)
    return await github.list_org_repos(token, org)


@router.get("/repos/{owner}/{repo}/hooks")
async def list_hooks(
    repository: Annotated[RepositoryIdentity, Depends(get_repository)],
    token: Annotated[str, Depends(require_repository_token)],
    github: Annotated[GitHubClient, Depends(get_github_client)],
) -> List[Dict[str, Any]]:
    """List webhooks configured on a repository."""
    return await github.list_hooks(token, repository)


@router.delete("/repos/{owner}/{repo}/hooks/{hook_id}", response_model=MessageResponse)
async def delete_hook(
    hook_id: int,
    repository: Annotated[RepositoryIdentity, Depends(get_repository)],
    token: Annotated[str, Depends(require_repository_token)],
    github: Annotated[GitHubClient, Depends(get_github_client)],
) -> MessageResponse:
    """Remove a webhook from a repository."""
    await github.delete_hook(token, repository, hook_id)
    logger.info(f"Deleted webhook {hook_id} from {repository}")
    return MessageResponse(message=f"Webhook {hook_id} removed from {repository}")


@router.get("/repos/{owner}/{repo}/branches")
async def list_branches(
    repository: Annotated[RepositoryIdentity, Depends(get_repository)],
    token: Annotated[str, Depends(require_repository_token)],
    github: Annotated[GitHubClient, Depends(get_github_client)],
) -> List[Dict[str, Any]]:
    return await github.list_branches(token, repository)


@router.post(
    "/add-webhook",
    response_model=AddWebhookResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_webhook(
    request: AddWebhookRequest,
    response: Response,
    credential_store: Annotated[CredentialStore, Depends(get_credential_store)],
    github: Annotated[GitHubClient, Depends(get_github_client)],
) -> AddWebhookResponse:
    """
    Attach the deployment webhook to one repository or a batch of them.

    The hook delivers push events as JSON to this service's webhook endpoint.
    A single repository answers 201 and propagates GitHub errors. A batch
    answers 200 with one result per repository; a GitHub error on one
    repository is recorded in its result and the rest are still attempted.
    Every name and token is checked before any hook is created.
    """
    targets = []
    for full_name in request.full_names():
        owner, name = full_name.split("/")
        repository = get_repository(owner, name)
        token = await credential_store.get_token_for_owner(repository.owner)
        if not token:
            raise AuthError("Unauthorized. Please authorize first.")
        targets.append((repository, token))

    if not request.is_batch:
        repository, token = targets[0]
        hook = await github.add_hook(token, repository, settings.webhook_url)
        logger.info(f"Webhook added to {repository} -> {settings.webhook_url}")
        return AddWebhookResponse(
            message=f"Webhook added to {repository}",
            hook_id=hook.get("id") if isinstance(hook, dict) else None,
        )

    results = []
    for repository, token in targets:
        try:
            hook = await github.add_hook(token, repository, settings.webhook_url)
        except ProviderUnauthorizedError:
            raise
        except ProviderError as exc:
            logger.error(f"Failed to add webhook to {repository}: status {exc.status}")
            results.append(
                WebhookResult(
                    repo_name=repository.full_name,
                    status="failed",
                    error=str(exc),
                    provider_status=exc.status,
                )
            )
            continue
        logger.info(f"Webhook added to {repository} -> {settings.webhook_url}")
        results.append(
            WebhookResult(
                repo_name=repository.full_name,
                status="created",
                hook_id=hook.get("id") if isinstance(hook, dict) else None,
            )
        )

    response.status_code = status.HTTP_200_OK
    return AddWebhookResponse(message="Webhook processing completed.", results=results)
