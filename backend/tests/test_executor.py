"""Tests for the DeploymentExecutor (runs real bash subprocesses)."""

import asyncio
import base64
import shutil
import subprocess

import pytest

from pushdeploy.models.deploy import RunState
from pushdeploy.models.repository import RepositoryIdentity
from pushdeploy.services.errors import NotFoundError, ScriptError, SyncError, ValidationError
from pushdeploy.services.executor import SYNC_SCRIPT, DeploymentExecutor
from pushdeploy.services.scripts import ScriptRegistry

REPO = RepositoryIdentity(owner="octo", name="app")


class LocalSyncExecutor(DeploymentExecutor):
    """Replaces the git clone/pull with a local shell snippet."""

    def __init__(self, registry, sync_script="echo synced"):
        super().__init__(registry, shell_path="bash", github_web_url="https://github.test")
        self.sync_script = sync_script

    def build_sync_command(self, run):
        return [self.shell_path, "-c", self.sync_script]


@pytest.fixture
def registry(scripts_root):
    return ScriptRegistry(str(scripts_root))


@pytest.fixture
def working_dir(tmp_path):
    return tmp_path / "checkout"


@pytest.mark.asyncio
async def test_successful_run_syncs_then_runs_script(registry, working_dir):
    registry.save_script(REPO, "echo deployed > marker.txt\necho script ran\n")
    executor = LocalSyncExecutor(registry)
    run = executor.create_run(REPO, "main", working_dir)

    await executor.execute(run)

    assert run.state is RunState.SUCCEEDED
    assert run.sync_exit_code == 0
    assert run.script_exit_code == 0
    assert (working_dir / "marker.txt").read_text() == "deployed\n"
    assert run.output_text.index("synced") < run.output_text.index("script ran")
    assert run.started_at is not None and run.finished_at is not None
    run.raise_for_state()


@pytest.mark.asyncio
async def test_sync_failure_never_runs_script(registry, working_dir):
    registry.save_script(REPO, "touch marker.txt\n")
    executor = LocalSyncExecutor(registry, sync_script="echo fatal: not found >&2; exit 3")
    run = executor.create_run(REPO, "main", working_dir)

    await executor.execute(run)

    assert run.state is RunState.SYNC_FAILED
    assert run.sync_exit_code == 3
    assert run.script_exit_code is None
    assert not (working_dir / "marker.txt").exists()
    assert "fatal: not found" in run.output_text
    with pytest.raises(SyncError) as exc_info:
        run.raise_for_state()
    assert exc_info.value.exit_code == 3


@pytest.mark.asyncio
async def test_script_failure_reports_exit_code(registry, working_dir):
    registry.save_script(REPO, "echo about to fail\nexit 7\n")
    executor = LocalSyncExecutor(registry)
    run = executor.create_run(REPO, "main", working_dir)

    await executor.execute(run)

    assert run.state is RunState.SCRIPT_FAILED
    assert run.script_exit_code == 7
    with pytest.raises(ScriptError) as exc_info:
        run.raise_for_state()
    assert exc_info.value.exit_code == 7
    assert "about to fail" in exc_info.value.output


@pytest.mark.asyncio
async def test_missing_script_fails_before_any_sync(registry, working_dir):
    executor = LocalSyncExecutor(registry)
    run = executor.create_run(REPO, "main", working_dir)

    await executor.execute(run)

    assert run.state is RunState.SCRIPT_NOT_FOUND
    assert run.sync_exit_code is None
    assert not working_dir.exists()
    with pytest.raises(NotFoundError):
        run.raise_for_state()


@pytest.mark.asyncio
async def test_empty_script_succeeds_without_sync(registry, working_dir, tmp_path):
    sentinel = tmp_path / "sync-ran"
    registry.save_script(REPO, "  \n")
    executor = LocalSyncExecutor(registry, sync_script=f"touch '{sentinel}'")
    run = executor.create_run(REPO, "main", working_dir)

    await executor.execute(run)

    assert run.state is RunState.SUCCEEDED
    assert run.script_exit_code == 0
    assert not sentinel.exists()


@pytest.mark.asyncio
async def test_stream_yields_output_and_summary_last(registry, working_dir):
    registry.save_script(REPO, "echo line one\necho line two\n")
    executor = LocalSyncExecutor(registry)
    run = executor.create_run(REPO, "main", working_dir)

    chunks = [chunk async for chunk in executor.stream(run)]
    text = "".join(chunks)

    assert "line one" in text
    assert "line two" in text
    assert chunks[-1] == "==> Deployment succeeded\n"
    assert chunks[0].startswith("==> Deploying octo/app (branch main)")


@pytest.mark.asyncio
async def test_failed_stream_ends_with_failure_summary(registry, working_dir):
    registry.save_script(REPO, "exit 2\n")
    executor = LocalSyncExecutor(registry)
    run = executor.create_run(REPO, "main", working_dir)

    chunks = [chunk async for chunk in executor.stream(run)]

    assert chunks[-1].startswith("==> Deployment failed")
    assert "exited with code 2" in chunks[-1]


@pytest.mark.asyncio
async def test_runs_on_same_working_dir_do_not_overlap(registry, working_dir, tmp_path):
    log = tmp_path / "events.log"
    registry.save_script(REPO, f"echo script >> '{log}'\n")
    executor = LocalSyncExecutor(
        registry,
        sync_script=f"echo sync-start >> '{log}'; sleep 0.3; echo sync-end >> '{log}'",
    )
    first = executor.create_run(REPO, "main", working_dir)
    second = executor.create_run(REPO, "main", working_dir)

    await asyncio.gather(executor.execute(first), executor.execute(second))

    assert first.succeeded and second.succeeded
    assert log.read_text().split() == [
        "sync-start", "sync-end", "script",
        "sync-start", "sync-end", "script",
    ]


@pytest.mark.asyncio
async def test_run_completes_when_reader_goes_away(registry, working_dir):
    registry.save_script(REPO, "sleep 0.2\necho done > marker.txt\n")
    executor = LocalSyncExecutor(registry)
    run = executor.create_run(REPO, "main", working_dir)

    stream = executor.stream(run)
    first_chunk = await stream.__anext__()
    assert first_chunk.startswith("==> Deploying")
    await stream.aclose()

    async def wait_for_finish():
        while run.finished_at is None:
            await asyncio.sleep(0.05)

    await asyncio.wait_for(wait_for_finish(), timeout=10)
    assert run.state is RunState.SUCCEEDED
    assert (working_dir / "marker.txt").exists()


@pytest.mark.asyncio
async def test_script_receives_deployment_environment(registry, working_dir):
    registry.save_script(
        REPO,
        'echo "repo=$PUSHDEPLOY_OWNER/$PUSHDEPLOY_REPO branch=$PUSHDEPLOY_BRANCH"\n'
        'echo "git-config=${GIT_CONFIG_COUNT:-none}"\n',
    )
    executor = LocalSyncExecutor(registry)
    run = executor.create_run(REPO, "release/v2", working_dir, token="gho_secret")

    await executor.execute(run)

    assert "repo=octo/app branch=release/v2" in run.output_text
    assert "git-config=none" in run.output_text
    assert "gho_secret" not in run.output_text


def test_create_run_rejects_unsafe_branch(registry, working_dir):
    executor = DeploymentExecutor(registry, shell_path="bash")

    with pytest.raises(ValidationError):
        executor.create_run(REPO, "--upload-pack=evil", working_dir)


def test_sync_command_passes_branch_and_url_as_arguments(registry, working_dir):
    executor = DeploymentExecutor(registry, shell_path="bash", github_web_url="https://github.test/")
    run = executor.create_run(REPO, "main", working_dir, token="gho_secret")

    cmd = executor.build_sync_command(run)

    assert cmd[:3] == ["bash", "-c", SYNC_SCRIPT]
    assert cmd[-2:] == ["main", "https://github.test/octo/app.git"]
    assert all("gho_secret" not in part for part in cmd)


def test_token_is_supplied_through_git_env_config(registry, working_dir):
    executor = DeploymentExecutor(registry, shell_path="bash", github_web_url="https://github.test")
    run = executor.create_run(REPO, "main", working_dir, token="gho_secret")

    sync_env = executor._build_env(run, with_token=True)
    script_env = executor._build_env(run, with_token=False)

    expected = base64.b64encode(b"x-access-token:gho_secret").decode()
    assert sync_env["GIT_CONFIG_COUNT"] == "1"
    assert sync_env["GIT_CONFIG_KEY_0"] == "http.https://github.test/.extraheader"
    assert sync_env["GIT_CONFIG_VALUE_0"] == f"AUTHORIZATION: basic {expected}"
    assert sync_env["GIT_TERMINAL_PROMPT"] == "0"
    assert script_env.get("GIT_CONFIG_VALUE_0") != sync_env["GIT_CONFIG_VALUE_0"]
    assert script_env["PUSHDEPLOY_BRANCH"] == "main"
    assert "gho_secret" not in repr(run)


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def git(*args, cwd):
    subprocess.run(
        ["git", "-c", "user.name=test", "-c", "user.email=test@example.com", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
    )


@pytest.fixture
def remote_root(tmp_path):
    """A bare repository at ``<remote_root>/octo/app.git`` with one commit on main."""
    source = tmp_path / "source"
    source.mkdir()
    git("init", cwd=source)
    git("symbolic-ref", "HEAD", "refs/heads/main", cwd=source)
    (source / "README").write_text("hello from main\n")
    git("add", "README", cwd=source)
    git("commit", "-m", "initial", cwd=source)
    root = tmp_path / "remote"
    (root / "octo").mkdir(parents=True)
    git("clone", "--bare", str(source), str(root / "octo" / "app.git"), cwd=tmp_path)
    return root


@requires_git
@pytest.mark.asyncio
async def test_git_sync_clones_then_pulls(registry, working_dir, remote_root):
    registry.save_script(REPO, "cat README\n")
    executor = DeploymentExecutor(registry, shell_path="bash", github_web_url=str(remote_root))

    first = executor.create_run(REPO, "main", working_dir)
    await executor.execute(first)
    second = executor.create_run(REPO, "main", working_dir)
    await executor.execute(second)

    assert first.state is RunState.SUCCEEDED, first.output_text
    assert second.state is RunState.SUCCEEDED, second.output_text
    assert "hello from main" in second.output_text


@requires_git
@pytest.mark.asyncio
async def test_git_sync_refuses_checkout_of_another_repository(registry, working_dir):
    working_dir.mkdir()
    git("init", cwd=working_dir)
    git("remote", "add", "origin", "https://github.test/other/repo.git", cwd=working_dir)
    registry.save_script(REPO, "echo script ran\n")
    executor = DeploymentExecutor(registry, shell_path="bash", github_web_url="https://github.test")
    run = executor.create_run(REPO, "main", working_dir)

    await executor.execute(run)

    assert run.state is RunState.SYNC_FAILED
    assert run.sync_exit_code == 1
    assert (
        "existing checkout tracks https://github.test/other/repo.git, "
        "not https://github.test/octo/app.git"
    ) in run.output_text
    assert "script ran" not in run.output_text
