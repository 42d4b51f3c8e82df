"""Script Registry for per-repository deployment scripts."""

import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from ..config import settings
from ..models.repository import RepositoryIdentity
from ..models.scripts import DeploymentConfig

logger = logging.getLogger(__name__)

SCRIPT_MODE = 0o755


class ScriptRegistry:
    """
    Stores deployment scripts and configuration on disk.

    Layout under the scripts root:
    - ``<owner>_<repo>.sh``: the deployment script (always executable)
    - ``<owner>_<repo>_config.json``: optional structured configuration
    - ``<owner>_<repo>/``: default working directory for the checkout
    """

    def __init__(self, scripts_dir: Optional[str] = None):
        """
        Initialize the Script Registry.

        Args:
            scripts_dir: Root directory for scripts and checkouts.
                        Defaults to ``settings.scripts_dir``.
        """
        self.root = Path(scripts_dir or settings.scripts_dir)
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info(f"Script registry initialized with root: {self.root}")

    def script_path(self, repository: RepositoryIdentity) -> Path:
        return self.root / f"{repository.slug}.sh"

    def config_path(self, repository: RepositoryIdentity) -> Path:
        return self.root / f"{repository.slug}_config.json"

    def default_working_dir(self, repository: RepositoryIdentity) -> Path:
        return self.root / repository.slug

    def resolve_working_dir(self, working_dir: str) -> Path:
        """Resolve a configured working directory; relative paths live under the scripts root."""
        path = Path(working_dir).expanduser()
        if not path.is_absolute():
            path = self.root / path
        return path.resolve()

    def has_script(self, repository: RepositoryIdentity) -> bool:
        return self.script_path(repository).is_file()

    def get_script(self, repository: RepositoryIdentity) -> str:
        """
        Return the stored script body.

        A repository that never had a script registered yields an empty
        string rather than an error.
        """
        path = self.script_path(repository)
        try:
            with open(path, "r", encoding="utf-8", newline="") as f:
                return f.read()
        except FileNotFoundError:
            return ""

    def save_script(self, repository: RepositoryIdentity, script: str) -> Path:
        """
        Write the script, replacing any previous content, and mark it executable.

        Empty text is valid and clears the previous script.
        """
        path = self.script_path(repository)
        tmp_path = path.with_name(f".{path.name}.tmp")
        with open(tmp_path, "w", encoding="utf-8", newline="") as f:
            f.write(script)
        os.chmod(tmp_path, SCRIPT_MODE)
        os.replace(tmp_path, path)
        logger.info(f"Saved deployment script for {repository} ({len(script)} bytes)")
        return path

    def get_config(self, repository: RepositoryIdentity) -> Optional[DeploymentConfig]:
        """Return the saved configuration, or None when absent or unreadable."""
        path = self.config_path(repository)
        if not path.exists():
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return DeploymentConfig.model_validate(data)
        except (OSError, json.JSONDecodeError, PydanticValidationError) as e:
            logger.error(f"Ignoring unreadable deployment config {path}: {e}")
            return None

    def save_config(self, repository: RepositoryIdentity, config: DeploymentConfig) -> Path:
        """
        Persist the structured configuration.

        When the configuration carries a script body, the script file is
        written as well so webhook runs pick it up.
        """
        path = self.config_path(repository)
        tmp_path = path.with_name(f".{path.name}.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(config.model_dump(by_alias=True), f, indent=2)
        os.replace(tmp_path, path)

        if config.script is not None:
            self.save_script(repository, config.script)

        logger.info(
            f"Saved deployment config for {repository}: branch={config.branch} "
            f"working_dir={config.working_dir}"
        )
        return path
