"""nginx process control: validate, install and reload configuration.

Validation has two layers. A structural check (balanced blocks, terminated
directives) always runs. When the nginx binary is available the candidate
is also loaded with ``nginx -t`` through a throw-away main configuration
that includes it from the ``http`` context, so the live file is never
involved.

Set ``nginx_cmd`` to a command prefix such as ``docker exec proxy nginx``
when nginx runs in a container.
"""

from __future__ import annotations

import asyncio
import shlex
import shutil
import tempfile
from pathlib import Path

import structlog

from glinr.core.errors import ProxyReloadError, ProxyValidationError
from glinr.core.files import atomic_write

logger = structlog.get_logger()

_TEST_HARNESS = """\
worker_processes 1;
pid {pid};
error_log stderr;
events {{ worker_connections 64; }}
http {{
    include {include};
}}
"""


def check_structure(config: str) -> None:
    """Reject configuration that nginx could never parse.

    Raises:
        ProxyValidationError: On an empty file, unbalanced braces or an
            unterminated directive.
    """
    if not config.strip():
        raise ProxyValidationError("nginx configuration is empty")

    depth = 0
    for number, raw in enumerate(config.splitlines(), start=1):
        line = _strip_comment(raw).strip()
        if not line:
            continue
        depth += line.count("{") - line.count("}")
        if depth < 0:
            raise ProxyValidationError(f"Unexpected '}}' at line {number}")
        if not line.endswith(("{", "}", ";")):
            raise ProxyValidationError(f"Unterminated directive at line {number}: {line}")
    if depth != 0:
        raise ProxyValidationError("Unbalanced braces in nginx configuration")


def _strip_comment(line: str) -> str:
    quote: str | None = None
    for index, char in enumerate(line):
        if quote:
            if char == quote:
                quote = None
        elif char in ("'", '"'):
            quote = char
        elif char == "#":
            return line[:index]
    return line


class NginxControl:
    """Validate, install and reload the generated nginx configuration.

    Args:
        conf_path: File the configuration is installed to.
        nginx_cmd: nginx binary or command prefix.
        validate_binary: Run ``nginx -t`` when the binary is available.
        reload_enabled: Signal nginx after installing a configuration.
        timeout: Bound for each nginx invocation (seconds).
    """

    def __init__(
        self,
        conf_path: str | Path,
        nginx_cmd: str = "nginx",
        validate_binary: bool = True,
        reload_enabled: bool = True,
        timeout: float = 30.0,
    ) -> None:
        self.conf_path = Path(conf_path)
        self.command = shlex.split(nginx_cmd) or ["nginx"]
        self.validate_binary = validate_binary
        self.reload_enabled = reload_enabled
        self.timeout = timeout

    @property
    def binary_available(self) -> bool:
        return shutil.which(self.command[0]) is not None

    async def _run(self, *args: str) -> tuple[int, str]:
        process = await asyncio.create_subprocess_exec(
            *self.command,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        try:
            async with asyncio.timeout(self.timeout):
                output, _ = await process.communicate()
        except TimeoutError:
            process.kill()
            await process.wait()
            raise
        return process.returncode or 0, output.decode("utf-8", errors="replace").strip()

    async def validate(self, config: str) -> None:
        """Raise ProxyValidationError unless ``config`` would load."""
        check_structure(config)

        if not self.validate_binary:
            return
        if not self.binary_available:
            logger.warning("nginx binary not found, skipping validation", cmd=self.command[0])
            return

        with tempfile.TemporaryDirectory(prefix="glinr-nginx-") as workdir:
            candidate = Path(workdir) / "candidate.conf"
            harness = Path(workdir) / "nginx.conf"
            candidate.write_text(config, encoding="utf-8")
            harness.write_text(
                _TEST_HARNESS.format(include=candidate, pid=Path(workdir) / "nginx.pid"),
                encoding="utf-8",
            )
            try:
                code, output = await self._run("-t", "-c", str(harness))
            except TimeoutError as e:
                raise ProxyValidationError("nginx -t timed out") from e

        if code != 0:
            logger.error("nginx configuration validation failed", output=output)
            raise ProxyValidationError(f"nginx configuration validation failed: {output}")
        logger.debug("nginx configuration validation passed")

    async def apply(self, config: str, *, reload: bool = True) -> None:
        """Install ``config`` atomically, then reload nginx.

        Raises:
            ProxyReloadError: If the file could not be written (the previous
                file stays in place) or the reload command failed (the new
                file stays in place).
        """
        try:
            await asyncio.to_thread(atomic_write, self.conf_path, config)
        except OSError as e:
            logger.error("nginx configuration write failed", path=str(self.conf_path), error=str(e))
            raise ProxyReloadError(f"Failed to write {self.conf_path}: {e}") from e
        logger.info("nginx configuration written", path=str(self.conf_path))

        if not reload or not self.reload_enabled:
            return
        if not self.binary_available:
            logger.warning("nginx binary not found, skipping reload", cmd=self.command[0])
            return

        try:
            code, output = await self._run("-s", "reload")
        except TimeoutError as e:
            raise ProxyReloadError("nginx reload timed out") from e
        except OSError as e:
            raise ProxyReloadError(f"nginx reload failed: {e}") from e
        if code != 0:
            logger.error("nginx reload failed", output=output)
            raise ProxyReloadError(f"nginx reload failed: {output}")
        logger.info("nginx configuration reloaded")
