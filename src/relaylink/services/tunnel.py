"""Background tunnel installation.

The installer itself is an external collaborator; this module defines the
protocol the provisioning flow talks to and a script-driven implementation
that shells out to the bundled install script, optionally behind a macOS
administrator prompt.
"""
from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol, Sequence

__all__ = ["TunnelOutcome", "TunnelResult", "TunnelInstaller", "ScriptTunnelInstaller"]

_log = logging.getLogger("relaylink.tunnel")

_CANCEL_MARKERS = ("User canceled", "User cancelled", "(-128)")


class TunnelOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class TunnelResult:
    outcome: TunnelOutcome
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is TunnelOutcome.SUCCESS


class TunnelInstaller(Protocol):
    def install(self, tunnel_token: str) -> TunnelResult: ...


def _applescript_quote(command: str) -> str:
    return command.replace("\\", "\\\\").replace('"', '\\"')


def _shell_quote(value: str) -> str:
    return "'" + value.replace("'", "'\\''") + "'"


class ScriptTunnelInstaller:
    """Runs the tunnel install script with the token as its only argument."""

    def __init__(self, script: Path, *, elevate: bool = False, timeout: float = 60.0) -> None:
        self.script = script
        self.elevate = elevate
        self.timeout = timeout

    def command(self, tunnel_token: str) -> Sequence[str]:
        if not self.elevate:
            return ["bash", str(self.script), tunnel_token]
        env_prefix = f"export APP_RESOURCES_PATH={_shell_quote(str(self.script.parent.parent))}"
        shell = f"{env_prefix} && bash {_shell_quote(str(self.script))} {_shell_quote(tunnel_token)}"
        return ["osascript", "-e", f'do shell script "{_applescript_quote(shell)}" with administrator privileges']

    def install(self, tunnel_token: str) -> TunnelResult:
        if not tunnel_token:
            return TunnelResult(TunnelOutcome.FAILURE, "no tunnel token provided")
        if not self.script.exists():
            _log.error("tunnel install script not found at %s", self.script)
            return TunnelResult(TunnelOutcome.FAILURE, "install script not found")
        try:
            os.chmod(self.script, 0o755)
        except PermissionError:
            pass
        if self.elevate:
            _log.info("requesting administrator privileges for tunnel installation")
        try:
            proc = subprocess.run(
                list(self.command(tunnel_token)),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return TunnelResult(TunnelOutcome.FAILURE, f"tunnel installation timed out after {self.timeout:.0f}s")
        except OSError as exc:
            return TunnelResult(TunnelOutcome.FAILURE, str(exc))

        if proc.returncode == 0:
            _log.info("tunnel service installed")
            return TunnelResult(TunnelOutcome.SUCCESS, proc.stdout.strip())
        detail = (proc.stderr or proc.stdout or f"exit code {proc.returncode}").strip()
        if any(marker in detail for marker in _CANCEL_MARKERS):
            return TunnelResult(TunnelOutcome.CANCELLED, "administrator prompt was cancelled")
        _log.error("tunnel installation failed: %s", detail)
        return TunnelResult(TunnelOutcome.FAILURE, detail)
