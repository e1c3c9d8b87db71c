# forge_workflows/shims/docker.py
"""
Docker command shim.

Every invocation counts as one tool call on the run's shared counter,
whether it succeeds or not.
"""
import asyncio
import json
import logging
import shlex

from forge_engine.collaborator import AgentTool
from forge_engine.counter import ToolCallCounter
from forge_engine.exceptions import CommandError
from forge_engine.metrics import METRICS

logger = logging.getLogger("forge.workflows.shims.docker")

MAX_OUTPUT_CHARS = 10 * 1024 * 1024

SANDBOX_DOCKERFILE = """\
FROM ubuntu:22.04
RUN apt-get update && apt-get install -y git curl ca-certificates && rm -rf /var/lib/apt/lists/*
WORKDIR {workdir}
CMD ["bash"]
"""


def normalize_command(cmd: str) -> str:
    """Strip an accidental ``bash -lc`` wrapper and surrounding quotes."""
    normalized = cmd.strip()
    if normalized.startswith("bash -lc "):
        normalized = normalized[len("bash -lc "):].strip()
    if len(normalized) >= 2 and normalized[0] == normalized[-1] and normalized[0] in ("'", '"'):
        normalized = normalized[1:-1]
    return normalized


class DockerShell:
    """
    Runs host and in-container commands through the docker CLI.

    Usage:
        shell = DockerShell(counter)
        out = await shell.exec(container_id, "cd /app/repo && git status")
    """

    def __init__(
        self,
        counter: ToolCallCounter,
        *,
        timeout: float = 120.0,
        docker_bin: str = "docker",
    ):
        self.counter = counter
        self.timeout = timeout
        self.docker_bin = docker_bin

    async def run(self, argv: list[str], *, stdin: str | None = None, check: bool = True) -> str:
        """Run ``argv`` on the host and return stdout."""
        self.counter.increment()
        METRICS.record_tool_call()
        command = shlex.join(argv)
        logger.debug("$ %s", command)

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if stdin is not None else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise CommandError(command, None, str(e)) from e
        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(stdin.encode() if stdin is not None else None),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise CommandError(command, None, f"timed out after {self.timeout:.0f}s")

        out = stdout.decode(errors="replace")[:MAX_OUTPUT_CHARS]
        if check and proc.returncode != 0:
            raise CommandError(command, proc.returncode, stderr.decode(errors="replace"))
        return out

    async def exec(self, container_id: str, cmd: str, *, check: bool = True) -> str:
        """Run a raw shell command inside ``container_id``."""
        return await self.run(
            [self.docker_bin, "exec", container_id, "bash", "-lc", normalize_command(cmd)],
            check=check,
        )

    async def exec_in(self, container_id: str, workdir: str, cmd: str, *, check: bool = True) -> str:
        """Run ``cmd`` from ``workdir`` inside the container."""
        return await self.exec(container_id, f"cd {shlex.quote(workdir)} && {cmd}", check=check)

    async def file_exists(self, container_id: str, path: str) -> bool:
        out = await self.exec(
            container_id,
            f"test -f {shlex.quote(path)} && echo EXISTS || echo MISSING",
            check=False,
        )
        return out.strip() == "EXISTS"

    async def read_file(self, container_id: str, path: str) -> str:
        return await self.exec(container_id, f"cat {shlex.quote(path)}")

    async def write_file(self, container_id: str, path: str, text: str) -> None:
        """Write ``text`` to ``path`` in the container through stdin."""
        await self.run(
            [self.docker_bin, "exec", "-i", container_id, "bash", "-lc", f"cat > {shlex.quote(path)}"],
            stdin=text,
        )

    async def copy_to(self, container_id: str, local_path: str, remote_path: str) -> None:
        """``docker cp`` a host file into the container."""
        await self.run([self.docker_bin, "cp", local_path, f"{container_id}:{remote_path}"])

    async def exec_with_secret(
        self,
        container_id: str,
        cmd: str,
        *,
        name: str,
        value: str,
        check: bool = True,
    ) -> str:
        """Run ``cmd`` with ``$name`` set from a temporary file, never argv.

        The secret travels over stdin into a root-only file that is removed
        when the command finishes, whatever its exit status.
        """
        secret_path = f"/root/.forge.{name.lower()}"
        await self.write_file(container_id, secret_path, value)
        quoted = shlex.quote(secret_path)
        wrapped = (
            f"{name}=$(cat {quoted}); rm -f {quoted}; export {name}; {cmd}"
        )
        return await self.exec(container_id, wrapped, check=check)

    async def start_sandbox(self, image: str, name: str, workdir: str) -> str:
        """Build the sandbox image, replace any old container, return its id."""
        await self.run(
            [self.docker_bin, "build", "-t", image, "-"],
            stdin=SANDBOX_DOCKERFILE.format(workdir=workdir),
        )
        await self.run([self.docker_bin, "rm", "-f", name], check=False)
        await self.run([self.docker_bin, "run", "-d", "--name", name, image, "tail", "-f", "/dev/null"])
        out = await self.run([self.docker_bin, "inspect", "-f", "{{.Id}}", name])
        return out.strip()


def docker_exec_tool(shell: DockerShell) -> AgentTool:
    """Expose ``DockerShell.exec`` to the collaborator as ``docker_exec``."""

    async def _handler(containerId: str, cmd: str) -> str:
        try:
            return await shell.exec(containerId, cmd)
        except CommandError as e:
            return json.dumps({"error": str(e), "exitCode": e.returncode})

    return AgentTool(
        name="docker_exec",
        description=(
            "Run a shell command inside a docker container. "
            "Pass RAW commands only (no 'bash -lc' wrapper)."
        ),
        parameters={
            "type": "object",
            "properties": {
                "containerId": {"type": "string", "description": "Docker container ID or name"},
                "cmd": {"type": "string", "description": "Shell command to run inside the container"},
            },
            "required": ["containerId", "cmd"],
        },
        handler=_handler,
    )
