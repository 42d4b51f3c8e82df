"""Webhook Gateway: turn GitHub push deliveries into streamed deployments."""

import hashlib
import hmac
import json
import logging
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import PlainTextResponse, StreamingResponse
from pydantic import ValidationError as PydanticValidationError

from ..config import settings
from ..models.deploy import PushEvent
from ..services.credentials import CredentialStore
from ..services.errors import AuthError, ValidationError
from ..services.executor import DeploymentExecutor
from ..services.scripts import ScriptRegistry
from .auth import get_credential_store
from .scripts import get_deployment_executor, get_script_registry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhook"])

SIGNATURE_PREFIX = "sha256="


def verify_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    """Check GitHub's ``X-Hub-Signature-256`` HMAC over the raw body."""
    if not signature or not signature.startswith(SIGNATURE_PREFIX):
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature[len(SIGNATURE_PREFIX):])


def parse_push_event(payload: Any) -> PushEvent:
    """
    Validate a push payload.

    Raises ValidationError naming the missing or malformed fields.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid webhook payload: expected a JSON object")
    try:
        event = PushEvent.model_validate(payload)
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(loc) for loc in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        raise ValidationError(f"Invalid webhook payload: {problems}") from exc
    return event


@router.post("/webhook")
async def handle_push_event(
    request: Request,
    registry: Annotated[ScriptRegistry, Depends(get_script_registry)],
    executor: Annotated[DeploymentExecutor, Depends(get_deployment_executor)],
    credential_store: Annotated[CredentialStore, Depends(get_credential_store)],
    x_github_event: Annotated[Optional[str], Header(alias="X-GitHub-Event")] = None,
    x_hub_signature_256: Annotated[Optional[str], Header(alias="X-Hub-Signature-256")] = None,
):
    """
    Run the registered deployment for a pushed branch.

    Once the payload is accepted the response is always 200: the body
    streams git and script output and ends with a line stating whether the
    deployment succeeded. Malformed payloads get 400 and start nothing.
    """
    body = await request.body()

    if settings.github_webhook_secret and not verify_signature(
        settings.github_webhook_secret, body, x_hub_signature_256
    ):
        logger.warning("Rejected webhook delivery with a missing or invalid signature")
        raise AuthError("Invalid webhook signature")

    event_name = x_github_event or "push"
    if event_name == "ping":
        return PlainTextResponse("pong")
    if event_name != "push":
        return PlainTextResponse(f"Ignored event: {event_name}")

    try:
        payload = json.loads(body or b"null")
    except ValueError as exc:
        raise ValidationError("Invalid webhook payload: body is not valid JSON") from exc

    push = parse_push_event(payload)
    repository = push.repository_identity
    branch = push.branch

    config = registry.get_config(repository)
    if config is not None and config.branch != branch:
        logger.info(f"Ignoring push to {repository}@{branch}; configured branch is {config.branch}")
        return PlainTextResponse(
            f"Ignored push to {branch}: {repository} deploys branch {config.branch}\n"
        )

    if config is not None:
        working_dir = registry.resolve_working_dir(config.working_dir)
    else:
        working_dir = registry.default_working_dir(repository)

    token = await credential_store.get_token_for_owner(repository.owner)
    run = executor.create_run(repository, branch, working_dir, token=token)
    logger.info(f"Push event accepted for {repository}@{branch}; deployment {run.run_id}")

    return StreamingResponse(executor.stream(run), media_type="text/plain; charset=utf-8")
