# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_agent_sandbox

"""Session Builder: provisions a sandbox for a task and prepares its working branch.

The build is a linear sequence of remote steps. Cancellation is cooperative and only
observed at four checkpoints: before creation, after creation, after dependency
installation and before branch setup. A command already in flight is never interrupted.
"""

import asyncio
import inspect
import json
import secrets
import string
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

import httpx

from coreason_agent_sandbox.commands import ensure_success, run_and_log_command
from coreason_agent_sandbox.config import (
    PROJECT_DIR,
    OrchestratorSettings,
    create_authenticated_repo_url,
    parse_timeout_minutes,
    repo_name_from_url,
    validate_environment,
)
from coreason_agent_sandbox.exceptions import (
    ErrorKind,
    SandboxError,
    SandboxTimeoutError,
    TransportError,
    classify_transport_error,
)
from coreason_agent_sandbox.models import CommandResult, PackageManager, SandboxConfig, SessionResult
from coreason_agent_sandbox.package_manager import detect_package_manager, install_dependencies
from coreason_agent_sandbox.registry import SandboxRegistry, get_registry
from coreason_agent_sandbox.runtime import ProcessHandle, SandboxHandle, SandboxTransport
from coreason_agent_sandbox.task_logger import TaskLogger
from coreason_agent_sandbox.utils.logger import logger
from coreason_agent_sandbox.utils.redaction import redact_sensitive_info

GET_PIP_SCRIPT = (
    "cd /tmp && curl https://bootstrap.pypa.io/get-pip.py -o get-pip.py && python3 get-pip.py && rm -f get-pip.py"
)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_id(length: int = 8) -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def generate_branch_name(now: datetime | None = None) -> str:
    """Build ``agent/<timestamp>-<id>``, e.g. ``agent/2025-01-31T14-05-09-k3v9x0qa``."""
    now = now or datetime.now(timezone.utc)
    return f"agent/{now.strftime('%Y-%m-%dT%H-%M-%S')}-{generate_id()}"


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _cancelled_result() -> SessionResult:
    return SessionResult(success=False, cancelled=True)


class SessionBuilder:
    """Creates a sandbox, clones the repository and prepares the task branch."""

    def __init__(
        self,
        transport: SandboxTransport,
        registry: SandboxRegistry | None = None,
        settings: OrchestratorSettings | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """Initializes the SessionBuilder.

        Args:
            transport: Creates sandboxes.
            registry: Where new sandboxes are registered. Defaults to the process-wide one.
            settings: Orchestrator settings. If not provided, loaded from the environment.
            client: Optional httpx.AsyncClient used to probe the dev server.
        """
        self.transport = transport
        self.registry = registry if registry is not None else get_registry()
        self.settings = settings or OrchestratorSettings()
        self._client = client
        self.dev_server_tasks: set[asyncio.Task[None]] = set()

    async def create(self, config: SandboxConfig, task_logger: TaskLogger) -> SessionResult:
        """Provision a ready-to-use sandbox for ``config.task_id``.

        Args:
            config: The task's sandbox configuration.
            task_logger: Receives the redacted, user-visible progress log.

        Returns:
            SessionResult: ``success=True`` with sandbox, domain and branch name;
            ``cancelled=True`` if a checkpoint observed cancellation; otherwise an error.
        """
        try:
            return await self._build(config, task_logger)
        except SandboxError as e:
            logger.error(f"Sandbox creation failed for task {config.task_id}: {redact_sensitive_info(str(e))}")
            await task_logger.error("Error occurred during sandbox creation")
            return SessionResult(success=False, error=str(e))
        except Exception as e:
            logger.error(
                f"Unexpected error during sandbox creation for task {config.task_id}: "
                f"{type(e).__name__}: {redact_sensitive_info(str(e))}"
            )
            await task_logger.error("Error occurred during sandbox creation")
            return SessionResult(success=False, error="Failed to create sandbox")

    async def _build(self, config: SandboxConfig, task_logger: TaskLogger) -> SessionResult:
        await task_logger.info("Processing repository URL")
        await self._progress(config, 20, "Validating environment variables...")

        validate_environment(config.selected_agent, config.github_token, config.api_keys, self.settings.e2b_api_key)
        await task_logger.info("Environment variables validated")

        if await self._cancelled(config):
            await task_logger.info("Task was cancelled before sandbox creation")
            return _cancelled_result()

        repo_url = create_authenticated_repo_url(config.repo_url, config.github_token)
        if repo_url != config.repo_url:
            await task_logger.info("Added GitHub authentication to repository URL")

        timeout_minutes = parse_timeout_minutes(
            config.timeout, self.settings.default_timeout_minutes, self.settings.max_sandbox_duration_minutes
        )
        await self._progress(config, 25, "Validating configuration...")

        sandbox = await self._create_sandbox(config, timeout_minutes * 60, task_logger)

        if await self._cancelled(config):
            await task_logger.info("Task was cancelled after sandbox creation")
            await self._discard(config.task_id, sandbox)
            return _cancelled_result()

        await self._clone(sandbox, repo_url, task_logger)
        await self._progress(config, 30, "Repository cloned, installing dependencies...")

        has_package_json = (await self._probe(sandbox, task_logger, "test", ["-f", "package.json"])).success

        manager: PackageManager | None = None
        if config.install_dependencies:
            await task_logger.info("Detecting project type and installing dependencies...")
            manager = await self._install_dependencies(config, sandbox, has_package_json, task_logger)

            if await self._cancelled(config):
                await task_logger.info("Task was cancelled after dependency installation")
                return _cancelled_result()
        else:
            await task_logger.info("Skipping dependency installation as requested by user")

        domain: str | None = None
        if has_package_json and config.install_dependencies:
            domain = await self._start_dev_server(config, sandbox, manager or "npm", task_logger)
        if not domain:
            domain = sandbox.get_hostname(config.dev_port)

        await self._configure_git_identity(config, sandbox, task_logger)
        await self._bootstrap_empty_repository(config, sandbox, task_logger)

        if await self._cancelled(config):
            await task_logger.info("Task was cancelled before branch setup")
            return _cancelled_result()

        branch_name = await self._setup_branch(config, sandbox, task_logger)
        await task_logger.success(f"Sandbox ready on branch {branch_name}")

        return SessionResult(success=True, sandbox=sandbox, domain=domain, branch_name=branch_name)

    async def _cancelled(self, config: SandboxConfig) -> bool:
        if config.on_cancellation_check is None:
            return False
        return bool(await _resolve(config.on_cancellation_check()))

    async def _progress(self, config: SandboxConfig, percent: int, message: str) -> None:
        if config.on_progress is None:
            return
        try:
            await _resolve(config.on_progress(percent, message))
        except Exception as e:
            logger.warning(f"Progress callback failed for task {config.task_id}: {e}")

    async def _run(
        self, sandbox: SandboxHandle, task_logger: TaskLogger, command: str, args: Sequence[str], cwd: str = PROJECT_DIR
    ) -> CommandResult:
        return await run_and_log_command(sandbox, command, args, task_logger, cwd=cwd)

    async def _probe(
        self, sandbox: SandboxHandle, task_logger: TaskLogger, command: str, args: Sequence[str]
    ) -> CommandResult:
        """Run a command whose failure is an answer, not an error."""
        return await run_and_log_command(sandbox, command, args, task_logger, cwd=PROJECT_DIR, failure_is_error=False)

    async def _create_sandbox(self, config: SandboxConfig, timeout_seconds: int, task_logger: TaskLogger) -> SandboxHandle:
        try:
            sandbox = await self.transport.create(timeout_seconds)
        except Exception as e:
            kind = classify_transport_error(e)
            if kind is ErrorKind.TIMEOUT:
                await task_logger.error("Sandbox creation timed out")
                await task_logger.error("This usually happens when the repository is large or has many dependencies")
                raise SandboxTimeoutError(
                    "Sandbox creation timed out. Try with a smaller repository or fewer dependencies."
                ) from e
            await task_logger.error("Sandbox creation failed")
            raise TransportError("Failed to create sandbox", kind) from e

        await task_logger.info("Sandbox created successfully")
        # Registered before any further step so a kill request can reach it
        self.registry.register(config.task_id, sandbox, config.keep_alive)
        if config.on_sandbox_created is not None:
            await _resolve(config.on_sandbox_created(sandbox.sandbox_id))
        return sandbox

    async def _discard(self, task_id: str, sandbox: SandboxHandle) -> None:
        if self.registry.get(task_id) is sandbox:
            self.registry.remove(task_id)
        try:
            await sandbox.close()
        except Exception as e:
            logger.warning(f"Failed to close sandbox {sandbox.sandbox_id} for task {task_id}: {e}")

    async def _clone(self, sandbox: SandboxHandle, repo_url: str, task_logger: TaskLogger) -> None:
        await task_logger.info("Cloning repository to project directory...")

        mkdir = await self._run(sandbox, task_logger, "mkdir", ["-p", PROJECT_DIR], cwd="/")
        ensure_success(mkdir, "Failed to create project directory")

        clone = await self._run(sandbox, task_logger, "git", ["clone", "--depth", "1", repo_url, PROJECT_DIR], cwd="/")
        if not clone.success:
            await task_logger.error("Failed to clone repository")
        ensure_success(clone, "Failed to clone repository to project directory")

        await task_logger.info("Repository cloned successfully")

    async def _install_dependencies(
        self, config: SandboxConfig, sandbox: SandboxHandle, has_package_json: bool, task_logger: TaskLogger
    ) -> PackageManager | None:
        """Install Node.js or Python dependencies. Never fatal.

        Returns:
            PackageManager | None: The Node.js package manager in effect, if any.
        """
        if has_package_json:
            await task_logger.info("package.json found, installing Node.js dependencies...")
            return await self._install_node_dependencies(config, sandbox, task_logger)

        if (await self._probe(sandbox, task_logger, "test", ["-f", "requirements.txt"])).success:
            await task_logger.info("requirements.txt found, installing Python dependencies...")
            await self._install_python_dependencies(config, sandbox, task_logger)
        else:
            await task_logger.info("No package.json or requirements.txt found, skipping dependency installation")
        return None

    async def _install_node_dependencies(
        self, config: SandboxConfig, sandbox: SandboxHandle, task_logger: TaskLogger
    ) -> PackageManager:
        manager = await detect_package_manager(sandbox, task_logger)

        if manager != "npm" and not (await self._probe(sandbox, task_logger, "which", [manager])).success:
            await task_logger.info(f"Installing {manager} globally...")
            global_install = await self._run(sandbox, task_logger, "npm", ["install", "-g", manager], cwd="/")
            if global_install.success:
                await task_logger.info(f"{manager} installed globally")
            else:
                await task_logger.error(f"Failed to install {manager} globally, falling back to npm")
                manager = "npm"

        await self._progress(config, 35, "Installing Node.js dependencies...")
        result = await install_dependencies(sandbox, manager, task_logger)

        if not result.success and manager != "npm":
            await task_logger.info("Package manager failed, trying npm as fallback")
            await self._progress(config, 37, f"{manager} failed, trying npm fallback...")
            result = await install_dependencies(sandbox, "npm", task_logger)
            if result.success:
                manager = "npm"

        if not result.success:
            logger.warning(f"Node.js dependency installation failed for task {config.task_id}")
            await task_logger.info("Warning: Failed to install Node.js dependencies, but continuing with sandbox setup")
        return manager

    async def _install_python_dependencies(
        self, config: SandboxConfig, sandbox: SandboxHandle, task_logger: TaskLogger
    ) -> None:
        await self._progress(config, 35, "Installing Python dependencies...")

        if not (await self._probe(sandbox, task_logger, "python3", ["-m", "pip", "--version"])).success:
            await task_logger.info("pip not found, installing pip...")
            bootstrap = await self._run(sandbox, task_logger, "sh", ["-c", GET_PIP_SCRIPT], cwd="/")
            if not bootstrap.success:
                logger.warning(f"pip bootstrap failed for task {config.task_id}")
                await task_logger.info("Warning: Could not install pip, skipping Python dependencies")
                return
            await task_logger.info("pip installed successfully")

        pip_install = await self._run(sandbox, task_logger, "python3", ["-m", "pip", "install", "-r", "requirements.txt"])
        if pip_install.success:
            await task_logger.info("Python dependencies installed successfully")
        else:
            logger.warning(f"Python dependency installation failed for task {config.task_id}")
            await task_logger.info("Warning: Failed to install Python dependencies, but continuing with sandbox setup")

    async def _start_dev_server(
        self, config: SandboxConfig, sandbox: SandboxHandle, manager: PackageManager, task_logger: TaskLogger
    ) -> str | None:
        """Start the ``dev`` script detached and resolve its public hostname.

        Best effort: the fixed delay does not guarantee the port is bound yet.
        """
        manifest = await self._probe(sandbox, task_logger, "cat", ["package.json"])
        if not manifest.success or not manifest.stdout.strip():
            return None

        try:
            package_json = json.loads(manifest.stdout)
        except ValueError:
            await task_logger.info("Could not parse package.json, skipping auto-start of dev server")
            return None

        scripts = package_json.get("scripts") if isinstance(package_json, dict) else None
        if not isinstance(scripts, dict) or not scripts.get("dev"):
            return None

        await task_logger.info("Dev script detected, starting development server...")
        dev_command = "npm run dev" if manager == "npm" else f"{manager} dev"

        def forward(line: str) -> None:
            task_logger.emit(f"[SERVER] {redact_sensitive_info(line)}")

        try:
            process = await sandbox.start_process(
                "sh",
                ["-c", f"cd {PROJECT_DIR} && {dev_command}"],
                cwd=PROJECT_DIR,
                on_stdout=forward,
                on_stderr=forward,
            )
        except Exception as e:
            logger.warning(f"Failed to start dev server for task {config.task_id}: {redact_sensitive_info(str(e))}")
            await task_logger.info("Warning: Could not start development server")
            return None

        # Output only flows while the process is awaited; the build does not wait on it
        drain = asyncio.create_task(self._drain_dev_server(config.task_id, process))
        self.dev_server_tasks.add(drain)
        drain.add_done_callback(self.dev_server_tasks.discard)

        await task_logger.info("Development server started")
        await asyncio.sleep(self.settings.dev_server_start_delay)
        domain = sandbox.get_hostname(config.dev_port)

        if self.settings.dev_server_probe_attempts > 0 and not await self._probe_dev_server(domain):
            await task_logger.info("Development server did not respond yet")
            return domain

        await task_logger.info("Development server is running")
        return domain

    async def _drain_dev_server(self, task_id: str, process: ProcessHandle) -> None:
        try:
            output = await process.wait()
        except Exception as e:
            logger.warning(f"Lost dev server output for task {task_id}: {redact_sensitive_info(str(e))}")
            return
        logger.info(f"Dev server for task {task_id} exited with code {output.exit_code}")

    async def _probe_dev_server(self, domain: str) -> bool:
        url = domain if domain.startswith(("http://", "https://")) else f"https://{domain}"
        client = self._client or httpx.AsyncClient(timeout=5.0)
        try:
            for attempt in range(1, self.settings.dev_server_probe_attempts + 1):
                try:
                    response = await client.get(url)
                    if response.status_code < 500:
                        return True
                except httpx.HTTPError as e:
                    logger.debug(f"Dev server probe {attempt} failed: {e}")
                await asyncio.sleep(self.settings.dev_server_probe_interval)
        finally:
            if self._client is None:
                await client.aclose()
        return False

    async def _configure_git_identity(
        self, config: SandboxConfig, sandbox: SandboxHandle, task_logger: TaskLogger
    ) -> None:
        name = config.git_author_name or self.settings.default_git_author_name
        email = config.git_author_email or self.settings.default_git_author_email
        for key, value in (("user.name", name), ("user.email", email)):
            result = await self._run(sandbox, task_logger, "git", ["config", key, value])
            if not result.success:
                logger.warning(f"Failed to set git {key} for task {config.task_id}")

    async def _bootstrap_empty_repository(
        self, config: SandboxConfig, sandbox: SandboxHandle, task_logger: TaskLogger
    ) -> None:
        """Give a repository without commits a ``main`` branch holding a README."""
        if (await self._probe(sandbox, task_logger, "git", ["rev-parse", "HEAD"])).success:
            return

        await task_logger.info("Empty repository detected, creating initial main branch")
        try:
            await sandbox.write_file(f"{PROJECT_DIR}/README.md", f"# {repo_name_from_url(config.repo_url)}\n")
        except Exception as e:
            raise TransportError("Failed to write README.md", classify_transport_error(e)) from e

        ensure_success(await self._run(sandbox, task_logger, "git", ["checkout", "-b", "main"]), "Failed to create main")
        ensure_success(await self._run(sandbox, task_logger, "git", ["add", "README.md"]), "Failed to stage README.md")
        ensure_success(
            await self._run(sandbox, task_logger, "git", ["commit", "-m", "Initial commit"]),
            "Failed to create initial commit",
        )
        await task_logger.info("Created initial commit on main branch")

        push = await self._run(sandbox, task_logger, "git", ["push", "-u", "origin", "main"])
        if push.success:
            await task_logger.info("Pushed main branch to origin")
        else:
            logger.warning(f"Could not push initial main branch for task {config.task_id}")

    async def _setup_branch(self, config: SandboxConfig, sandbox: SandboxHandle, task_logger: TaskLogger) -> str:
        branch_name = config.pre_determined_branch_name
        if not branch_name:
            branch_name = generate_branch_name()
            await task_logger.info("No predetermined branch name, using timestamp-based branch")
            checkout = await self._run(sandbox, task_logger, "git", ["checkout", "-b", branch_name])
            ensure_success(checkout, f"Failed to create branch {branch_name}")
            return branch_name

        await task_logger.info("Using pre-determined branch name")
        remote = await self._probe(sandbox, task_logger, "git", ["ls-remote", "--heads", "origin", branch_name])

        if remote.success and remote.stdout.strip():
            await task_logger.info("Branch exists on remote, checking it out")
            # The shallow clone only tracks the default branch
            fetch = await self._run(
                sandbox,
                task_logger,
                "git",
                ["fetch", "--depth", "1", "origin", f"+refs/heads/{branch_name}:refs/remotes/origin/{branch_name}"],
            )
            ensure_success(fetch, f"Failed to fetch branch {branch_name}")
            checkout = await self._run(sandbox, task_logger, "git", ["checkout", branch_name])
        else:
            await task_logger.info("Creating new branch")
            checkout = await self._run(sandbox, task_logger, "git", ["checkout", "-b", branch_name])

        ensure_success(checkout, f"Failed to check out branch {branch_name}")
        return branch_name
