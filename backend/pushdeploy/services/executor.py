"""Deployment Executor: bring a checkout up to date and run the registered script."""

import asyncio
import base64
import codecs
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Callable, Dict, List, Optional, Set
from urllib.parse import quote
from uuid import uuid4

from ..config import settings
from ..models.deploy import RunState
from ..models.repository import RepositoryIdentity, validate_branch_name
from .errors import NotFoundError, ScriptError, SyncError, ValidationError
from .scripts import ScriptRegistry

logger = logging.getLogger(__name__)

# Clone-or-pull as one shell conditional. $1 is the branch and $2 the clone URL;
# both arrive as positional parameters and are never spliced into the script text.
# An existing checkout must track the same clone URL, otherwise the sync fails.
SYNC_SCRIPT = (
    "if [ -d .git ]; then "
    'origin="$(git remote get-url origin 2>/dev/null)"; '
    'if [ "$origin" != "$2" ]; then '
    'echo "existing checkout tracks ${origin:-no origin}, not $2" >&2; exit 1; fi; '
    'git fetch --prune origin && git checkout "$1" && git pull --ff-only origin "$1"; '
    'else git clone --branch "$1" -- "$2" .; fi'
)
READ_CHUNK_BYTES = 4096

Emit = Callable[[Optional[str]], None]


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DeploymentRun:
    """State of one sync+run sequence. Lives only as long as the request that started it."""

    repository: RepositoryIdentity
    branch: str
    working_dir: Path
    token: Optional[str] = field(default=None, repr=False)
    run_id: str = field(default_factory=lambda: uuid4().hex[:12])
    state: RunState = RunState.PENDING
    sync_exit_code: Optional[int] = None
    script_exit_code: Optional[int] = None
    output: List[str] = field(default_factory=list)
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def output_text(self) -> str:
        return "".join(self.output)

    @property
    def succeeded(self) -> bool:
        return self.state is RunState.SUCCEEDED

    def summary(self) -> str:
        """One-line narration of the outcome."""
        if self.state is RunState.SUCCEEDED:
            return "Deployment succeeded"
        if self.state is RunState.SCRIPT_NOT_FOUND:
            return f"Deployment failed: no deployment script registered for {self.repository}"
        if self.state is RunState.SYNC_FAILED:
            return (
                f"Deployment failed: {self.error or 'git sync failed'}; "
                "the deployment script was not run"
            )
        if self.state is RunState.SCRIPT_FAILED:
            return f"Deployment failed: {self.error or 'deployment script failed'}"
        return f"Deployment ended in state {self.state.value}"

    def raise_for_state(self) -> None:
        """Raise the error matching a failed terminal state; no-op on success."""
        if self.state is RunState.SCRIPT_NOT_FOUND:
            raise NotFoundError(f"Script not found for {self.repository}")
        if self.state is RunState.SYNC_FAILED:
            raise SyncError(
                self.summary(), exit_code=self.sync_exit_code, output=self.output_text
            )
        if self.state is RunState.SCRIPT_FAILED:
            raise ScriptError(
                self.summary(), exit_code=self.script_exit_code, output=self.output_text
            )


class DeploymentExecutor:
    """
    Runs deployments for registered repositories.

    Responsibilities:
    - Serialize runs per working directory (one asyncio.Lock per resolved path)
    - Clone or pull the pushed branch before the script runs
    - Run the registered script inside the checkout
    - Tee combined stdout/stderr into the log and to the caller as it is produced
    """

    def __init__(
        self,
        registry: ScriptRegistry,
        shell_path: Optional[str] = None,
        github_web_url: Optional[str] = None,
    ) -> None:
        self.registry = registry
        self.shell_path = shell_path or settings.shell_path
        self.github_web_url = (github_web_url or settings.github_web_url).rstrip("/")
        self._locks: Dict[str, asyncio.Lock] = {}
        self._tasks: Set[asyncio.Task[None]] = set()

    def create_run(
        self,
        repository: RepositoryIdentity,
        branch: str,
        working_dir: Path,
        token: Optional[str] = None,
    ) -> DeploymentRun:
        """Validate inputs and return a PENDING run."""
        try:
            validate_branch_name(branch)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        return DeploymentRun(
            repository=repository,
            branch=branch,
            working_dir=Path(working_dir),
            token=token,
        )

    def lock_for(self, working_dir: Path) -> asyncio.Lock:
        key = str(Path(working_dir).resolve())
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def clone_url(self, repository: RepositoryIdentity) -> str:
        return (
            f"{self.github_web_url}/{quote(repository.owner, safe='')}/"
            f"{quote(repository.name, safe='')}.git"
        )

    def build_sync_command(self, run: DeploymentRun) -> List[str]:
        return [
            self.shell_path,
            "-c",
            SYNC_SCRIPT,
            "pushdeploy-sync",
            run.branch,
            self.clone_url(run.repository),
        ]

    def build_script_command(self, run: DeploymentRun) -> List[str]:
        return [self.shell_path, str(self.registry.script_path(run.repository))]

    async def stream(self, run: DeploymentRun) -> AsyncIterator[str]:
        """
        Start ``run`` and yield its output chunks as they are produced.

        The run itself executes in a separate task that writes every chunk
        to the log and to an unbounded queue, so a slow or vanished reader
        never stalls the subprocess and the run always reaches a terminal
        state.
        """
        queue: asyncio.Queue[Optional[str]] = asyncio.Queue()
        task = asyncio.create_task(self._drive(run, queue.put_nowait))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        while True:
            chunk = await queue.get()
            if chunk is None:
                break
            yield chunk
        await task

    async def execute(self, run: DeploymentRun) -> DeploymentRun:
        """Run to completion and return the finished run."""
        async for _ in self.stream(run):
            pass
        return run

    async def _drive(self, run: DeploymentRun, emit: Emit) -> None:
        def say(message: str) -> None:
            emit(f"==> {message}\n")

        run.started_at = _now()
        logger.info(
            "Deployment %s started for %s (branch %s) in %s",
            run.run_id,
            run.repository,
            run.branch,
            run.working_dir,
        )
        try:
            say(f"Deploying {run.repository} (branch {run.branch}) in {run.working_dir}")

            if not self.registry.has_script(run.repository):
                run.state = RunState.SCRIPT_NOT_FOUND
                return

            script = self.registry.get_script(run.repository)
            if not script.strip():
                say("Deployment script is empty; nothing to run")
                run.script_exit_code = 0
                run.state = RunState.SUCCEEDED
                return

            lock = self.lock_for(run.working_dir)
            if lock.locked():
                say(f"Waiting for the deployment already running in {run.working_dir}")
            async with lock:
                await self._sync(run, say, emit)
                if run.state is not RunState.SYNCED:
                    return
                await self._run_script(run, say, emit)
        except Exception as exc:
            logger.error(
                "Deployment %s for %s aborted: %s", run.run_id, run.repository, exc, exc_info=True
            )
            run.error = str(exc)
            if run.state in (RunState.PENDING, RunState.SYNCING):
                run.state = RunState.SYNC_FAILED
            else:
                run.state = RunState.SCRIPT_FAILED
        finally:
            run.finished_at = _now()
            say(run.summary())
            log = logger.info if run.succeeded else logger.warning
            log(
                "Deployment %s for %s finished: %s",
                run.run_id,
                run.repository,
                run.state.value,
            )
            emit(None)

    async def _sync(self, run: DeploymentRun, say: Callable[[str], None], emit: Emit) -> None:
        run.state = RunState.SYNCING
        run.working_dir.mkdir(parents=True, exist_ok=True)
        say(f"Syncing branch {run.branch}")

        exit_code = await self._stream_process(
            run, self.build_sync_command(run), self._build_env(run, with_token=True), emit
        )
        run.sync_exit_code = exit_code
        if exit_code != 0:
            run.error = f"git sync exited with code {exit_code}"
            run.state = RunState.SYNC_FAILED
            return
        run.state = RunState.SYNCED

    async def _run_script(
        self, run: DeploymentRun, say: Callable[[str], None], emit: Emit
    ) -> None:
        run.state = RunState.RUNNING
        say("Running deployment script")

        exit_code = await self._stream_process(
            run, self.build_script_command(run), self._build_env(run, with_token=False), emit
        )
        run.script_exit_code = exit_code
        if exit_code != 0:
            run.error = f"deployment script exited with code {exit_code}"
            run.state = RunState.SCRIPT_FAILED
            return
        run.state = RunState.SUCCEEDED

    async def _stream_process(
        self, run: DeploymentRun, cmd: List[str], env: Dict[str, str], emit: Emit
    ) -> int:
        """Spawn ``cmd`` in the working directory and publish its combined output."""
        process = None
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(run.working_dir),
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
            assert process.stdout is not None
            while True:
                data = await process.stdout.read(READ_CHUNK_BYTES)
                if not data:
                    break
                self._publish(run, decoder.decode(data), emit)
            self._publish(run, decoder.decode(b"", final=True), emit)
            return await process.wait()
        finally:
            if process is not None and process.returncode is None:
                try:
                    process.kill()
                    await asyncio.wait_for(process.wait(), timeout=5.0)
                except (ProcessLookupError, asyncio.TimeoutError):
                    pass

    def _publish(self, run: DeploymentRun, text: str, emit: Emit) -> None:
        if not text:
            return
        run.output.append(text)
        emit(text)
        for line in text.splitlines():
            logger.info("[%s] %s", run.repository, line)

    def _build_env(self, run: DeploymentRun, with_token: bool) -> Dict[str, str]:
        env = dict(os.environ)
        env["GIT_TERMINAL_PROMPT"] = "0"
        env["PUSHDEPLOY_OWNER"] = run.repository.owner
        env["PUSHDEPLOY_REPO"] = run.repository.name
        env["PUSHDEPLOY_BRANCH"] = run.branch
        env["PUSHDEPLOY_WORKING_DIR"] = str(run.working_dir)
        if with_token and run.token:
            # Supplied through git's env config so the token stays out of argv and .git/config
            credentials = base64.b64encode(f"x-access-token:{run.token}".encode()).decode()
            env["GIT_CONFIG_COUNT"] = "1"
            env["GIT_CONFIG_KEY_0"] = f"http.{self.github_web_url}/.extraheader"
            env["GIT_CONFIG_VALUE_0"] = f"AUTHORIZATION: basic {credentials}"
        return env
