"""Docker runtime services for failoverlab."""

import os
import tempfile
from typing import Callable, Iterable, Mapping, Optional, Sequence, Tuple

from failoverlab.errors import OrchestratorError


class DockerRuntimeService:
    """Container-execution collaborator backed by the docker CLI."""

    def __init__(self, logger, console, run_cmd: Callable):
        self.logger = logger
        self.console = console
        self.run_cmd = run_cmd

    def validate_environment(self):
        self.console.print("[blue]Validating Docker environment...[/blue]")
        self.run_cmd(["docker", "--version"], capture_output=True)
        self.run_cmd(["docker", "info", "--format", "{{.ServerVersion}}"], capture_output=True)
        self.console.print("[green]Docker is available.[/green]")

    def create_network(self, name: str):
        self.logger.info("Creating docker network %s", name)
        self.run_cmd(["docker", "network", "create", name], capture_output=True)

    def remove_network(self, name: str):
        self.logger.info("Removing docker network %s", name)
        self.run_cmd(["docker", "network", "rm", name], capture_output=True)

    def start_container(
        self,
        name: str,
        image: str,
        network: str,
        aliases: Iterable[str] = (),
        env: Optional[Mapping[str, str]] = None,
        publish: Sequence[str] = (),
        command: Sequence[str] = (),
    ) -> str:
        """Starts a detached container on ``network``.

        Environment values are handed over through a private env-file so that
        credentials never show up in the process list or in debug logs.
        """
        cmd = ["docker", "run", "-d", "--name", name, "--network", network]
        for alias in aliases:
            cmd += ["--network-alias", alias]
        for port in publish:
            cmd += ["-p", port]

        env_file = None
        try:
            if env:
                env_file = self._write_env_file(env)
                cmd += ["--env-file", env_file]
            cmd.append(image)
            cmd += list(command)
            self.run_cmd(cmd, capture_output=True)
        finally:
            if env_file and os.path.exists(env_file):
                os.remove(env_file)

        self.logger.debug("Started container %s from %s", name, image)
        return name

    def published_port(self, name: str, container_port: int) -> Tuple[str, int]:
        result = self.run_cmd(
            ["docker", "port", name, f"{container_port}/tcp"],
            capture_output=True,
        )
        lines = [line.strip() for line in (result.stdout or "").splitlines() if line.strip()]
        if not lines:
            raise OrchestratorError(f"Container {name} does not publish port {container_port}.")

        host, _, port = lines[0].rpartition(":")
        if host in ("0.0.0.0", "[::]", "::", ""):
            host = "127.0.0.1"
        try:
            return host, int(port)
        except ValueError as exc:
            raise OrchestratorError(
                f"Unexpected `docker port` output for {name}: {lines[0]}"
            ) from exc

    def exec_in_container(
        self,
        name: str,
        command: Sequence[str],
        workdir: Optional[str] = None,
    ) -> int:
        """Runs ``command`` inside ``name`` and blocks until it completes."""
        cmd = ["docker", "exec"]
        if workdir:
            cmd += ["-w", workdir]
        cmd.append(name)
        cmd += list(command)
        result = self.run_cmd(cmd, check=False)
        return result.returncode

    def stop_container(self, name: str):
        self.logger.info("Stopping container %s", name)
        result = self.run_cmd(["docker", "rm", "-f", name], check=False, capture_output=True)
        if result.returncode == 0:
            return
        stderr = (result.stderr or "").strip()
        if "No such container" in stderr:
            self.logger.debug("Container %s is already gone", name)
            return
        raise OrchestratorError(f"Could not remove container {name}: {stderr}")

    @staticmethod
    def _write_env_file(env: Mapping[str, str]) -> str:
        fd, path = tempfile.mkstemp(prefix="failoverlab-env-", suffix=".list")
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as file_obj:
            for key, value in env.items():
                file_obj.write(f"{key}={value}\n")
        return path
