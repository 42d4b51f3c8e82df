# API routes package

from . import auth, repos, scripts, webhook

__all__ = [
    "auth",
    "repos",
    "scripts",
    "webhook",
]
