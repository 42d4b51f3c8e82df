"""GitHub REST API proxy used by the dashboard endpoints."""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from ..config import settings
from ..models.repository import RepositoryIdentity
from .errors import ProviderError, ProviderUnauthorizedError

logger = logging.getLogger(__name__)

GITHUB_ACCEPT = "application/vnd.github+json"
PER_PAGE = 100


class GitHubClient:
    """
    Thin authenticated pass-through to the GitHub REST API.

    Every call raises ProviderError on a non-2xx answer (ProviderUnauthorizedError
    for 401) so handlers never have to inspect raw responses.
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_pages: Optional[int] = None,
    ) -> None:
        self.api_url = (api_url or settings.github_api_url).rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.github_request_timeout_seconds
        self.max_pages = max(1, max_pages or settings.github_max_pages)

    async def list_repos(self, token: str) -> List[Dict[str, Any]]:
        """Personal repositories plus the repositories of every organization the user belongs to."""
        repos = await self._get_paginated(token, "/user/repos", params={"type": "all"})
        seen = {repo.get("id") for repo in repos}
        for org in await self.list_orgs(token):
            login = org.get("login")
            if not login:
                continue
            for repo in await self.list_org_repos(token, login):
                # user/repos?type=all already includes org repos the user is a member of
                if repo.get("id") in seen:
                    continue
                seen.add(repo.get("id"))
                repos.append(repo)
        return repos

    async def list_orgs(self, token: str) -> List[Dict[str, Any]]:
        return await self._get_paginated(token, "/user/orgs")

    async def list_org_repos(self, token: str, org: str) -> List[Dict[str, Any]]:
        return await self._get_paginated(token, f"/orgs/{quote(org, safe='')}/repos")

    async def list_hooks(self, token: str, repository: RepositoryIdentity) -> List[Dict[str, Any]]:
        return await self._get_paginated(token, f"{self._repo_path(repository)}/hooks")

    async def add_hook(
        self, token: str, repository: RepositoryIdentity, url: str
    ) -> Dict[str, Any]:
        """Create a JSON push webhook delivering to ``url``."""
        payload = {
            "name": "web",
            "active": True,
            "events": ["push"],
            "config": {"url": url, "content_type": "json"},
        }
        if settings.github_webhook_secret:
            payload["config"]["secret"] = settings.github_webhook_secret
        response = await self._request(
            "POST", token, f"{self._repo_path(repository)}/hooks", json=payload
        )
        return response.json()

    async def delete_hook(self, token: str, repository: RepositoryIdentity, hook_id: int) -> None:
        await self._request("DELETE", token, f"{self._repo_path(repository)}/hooks/{int(hook_id)}")

    async def list_branches(
        self, token: str, repository: RepositoryIdentity
    ) -> List[Dict[str, Any]]:
        return await self._get_paginated(token, f"{self._repo_path(repository)}/branches")

    def _repo_path(self, repository: RepositoryIdentity) -> str:
        return f"/repos/{quote(repository.owner, safe='')}/{quote(repository.name, safe='')}"

    def _headers(self, token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": GITHUB_ACCEPT,
            "X-GitHub-Api-Version": "2022-11-28",
        }

    async def _get_paginated(
        self, token: str, path: str, params: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """Follow ``Link: rel="next"`` until exhausted or ``max_pages`` is reached."""
        items: List[Dict[str, Any]] = []
        url: Optional[str] = f"{self.api_url}{path}"
        query: Optional[Dict[str, Any]] = {"per_page": PER_PAGE, **(params or {})}
        page_count = 0

        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            while url and page_count < self.max_pages:
                response = await self._send(client, "GET", url, token, params=query)
                data = response.json()
                if not isinstance(data, list):
                    raise ProviderError(
                        502, str(data)[:500], f"Unexpected response shape from {path}"
                    )
                items.extend(data)
                page_count += 1
                url = response.links.get("next", {}).get("url")
                # the next link already carries the query string
                query = None

        if url:
            logger.warning("Stopped following %s after %d pages", path, page_count)
        return items

    async def _request(self, method: str, token: str, path: str, **kwargs: Any) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            return await self._send(client, method, f"{self.api_url}{path}", token, **kwargs)

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        token: str,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = await client.request(method, url, headers=self._headers(token), **kwargs)
        except httpx.HTTPError as exc:
            logger.error("GitHub request %s %s failed: %s", method, url, exc)
            raise ProviderError(502, "", f"GitHub API request failed: {exc}") from exc

        if response.status_code == 401:
            logger.warning("GitHub rejected the stored token for %s %s", method, url)
            raise ProviderUnauthorizedError(401, response.text)
        if not response.is_success:
            logger.error(
                "GitHub API responded with status %s for %s %s: %s",
                response.status_code,
                method,
                url,
                response.text,
            )
            raise ProviderError(response.status_code, response.text)
        return response
