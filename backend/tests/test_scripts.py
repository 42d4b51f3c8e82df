"""Tests for the ScriptRegistry."""

import json
import os

import pytest
from hypothesis import HealthCheck, given
from hypothesis import settings as hypothesis_settings
from hypothesis import strategies as st

from pushdeploy.models.repository import RepositoryIdentity
from pushdeploy.models.scripts import DeploymentConfig
from pushdeploy.services.scripts import ScriptRegistry

REPO = RepositoryIdentity(owner="octo", name="app")


@pytest.fixture
def registry(scripts_root):
    return ScriptRegistry(str(scripts_root))


class TestScriptStorage:
    def test_unregistered_repository_has_empty_script(self, registry):
        assert registry.has_script(REPO) is False
        assert registry.get_script(REPO) == ""

    def test_save_writes_executable_script(self, registry, scripts_root):
        path = registry.save_script(REPO, "#!/bin/bash\necho hi\n")

        assert path == scripts_root / "octo_app.sh"
        assert path.read_text() == "#!/bin/bash\necho hi\n"
        assert os.access(path, os.X_OK)
        assert registry.has_script(REPO)

    def test_save_overwrites_previous_script(self, registry):
        registry.save_script(REPO, "echo one\n")
        registry.save_script(REPO, "echo two\n")

        assert registry.get_script(REPO) == "echo two\n"

    def test_empty_script_is_allowed(self, registry):
        registry.save_script(REPO, "echo one\n")
        registry.save_script(REPO, "")

        assert registry.has_script(REPO)
        assert registry.get_script(REPO) == ""

    def test_names_are_sanitized_into_the_root(self, registry, scripts_root):
        repo = RepositoryIdentity(owner="weird owner", name="app")
        path = registry.save_script(repo, "echo hi\n")

        assert path.parent == scripts_root
        assert path.name == "weird-owner_app.sh"

    def test_dot_prefixed_repository_does_not_share_files(self, registry):
        profile = RepositoryIdentity(owner="octo", name=".github")
        plain = RepositoryIdentity(owner="octo", name="github")

        registry.save_script(profile, "echo profile\n")

        assert registry.script_path(profile) != registry.script_path(plain)
        assert registry.default_working_dir(profile) != registry.default_working_dir(plain)
        assert registry.get_script(plain) == ""

    @hypothesis_settings(suppress_health_check=[HealthCheck.function_scoped_fixture])
    @given(script=st.text(alphabet=st.characters(blacklist_categories=("Cs",))))
    def test_saved_script_reads_back_verbatim(self, registry, script):
        registry.save_script(REPO, script)
        assert registry.get_script(REPO) == script


class TestDeploymentConfig:
    def test_missing_config_is_none(self, registry):
        assert registry.get_config(REPO) is None

    def test_save_and_load_config(self, registry, scripts_root):
        config = DeploymentConfig(branch="main", working_dir="/srv/app")

        registry.save_config(REPO, config)

        stored = json.loads((scripts_root / "octo_app_config.json").read_text())
        assert stored == {"script": None, "branch": "main", "workingDir": "/srv/app"}
        assert registry.get_config(REPO) == config
        assert registry.has_script(REPO) is False

    def test_config_with_script_also_writes_script(self, registry):
        config = DeploymentConfig(script="echo deploy\n", branch="main", working_dir="app")

        registry.save_config(REPO, config)

        assert registry.get_script(REPO) == "echo deploy\n"

    def test_corrupt_config_is_ignored(self, registry, scripts_root):
        (scripts_root / "octo_app_config.json").write_text("{broken")

        assert registry.get_config(REPO) is None

    def test_config_missing_branch_is_ignored(self, registry, scripts_root):
        (scripts_root / "octo_app_config.json").write_text(json.dumps({"workingDir": "/srv"}))

        assert registry.get_config(REPO) is None


class TestWorkingDirectories:
    def test_default_working_dir_is_under_root(self, registry, scripts_root):
        assert registry.default_working_dir(REPO) == scripts_root / "octo_app"

    def test_relative_working_dir_resolves_under_root(self, registry, scripts_root):
        assert registry.resolve_working_dir("checkouts/app") == (
            scripts_root / "checkouts" / "app"
        ).resolve()

    def test_absolute_working_dir_is_kept(self, registry, tmp_path):
        target = tmp_path / "elsewhere"
        assert registry.resolve_working_dir(str(target)) == target.resolve()
