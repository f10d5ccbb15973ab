from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
import threading
from collections.abc import Sequence

import boto3
from botocore.exceptions import BotoCoreError

from .errors import CommandBusy, CommandTimedOut, ExternalCommandFailed, ToolNotFound

DEFAULT_TOOL = "aws"
DEFAULT_TIMEOUT_SECONDS = 60.0

logger = logging.getLogger(__name__)

_profile: str | None = None


def get_profile() -> str | None:
    return _profile


def set_profile(profile: str | None) -> str | None:
    """Set the profile used by every later command; blank or None clears it."""
    global _profile
    _profile = (profile or "").strip() or None
    logger.info("AWS profile set to %s", _profile or "<tool default>")
    return _profile


def list_profiles() -> list[str]:
    try:
        return sorted(boto3.Session().available_profiles)
    except BotoCoreError as error:
        logger.warning("Could not read AWS profiles: %s", error)
        return []


def build_command(*tokens: str, profile: str | None = None, tool: str = DEFAULT_TOOL) -> list[str]:
    command = [tool]
    if profile:
        command.extend(["--profile", profile])
    command.extend(tokens)
    return command


def format_command(command: Sequence[str]) -> str:
    return shlex.join(command)


class AwsCliRunner:
    """Runs AWS CLI commands one at a time and returns their standard output."""

    def __init__(self, tool: str = DEFAULT_TOOL, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.tool = tool or DEFAULT_TOOL
        self.timeout = timeout if timeout and timeout > 0 else DEFAULT_TIMEOUT_SECONDS
        self._lock = threading.Lock()

    def is_available(self) -> bool:
        return shutil.which(self.tool) is not None

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def command(self, *tokens: str) -> list[str]:
        return build_command(*tokens, profile=get_profile(), tool=self.tool)

    def aws(self, *tokens: str) -> str:
        return self.run(self.command(*tokens))

    def run(self, command: Sequence[str]) -> str:
        if not self._lock.acquire(blocking=False):
            raise CommandBusy()
        try:
            return self._execute(list(command))
        finally:
            self._lock.release()

    def _execute(self, command: list[str]) -> str:
        logger.info("$ %s", format_command(command))
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as error:
            logger.warning("Command not found: %s", command[0])
            raise ToolNotFound(command[0]) from error
        except subprocess.TimeoutExpired as error:
            logger.warning("Command timed out after %ss: %s", self.timeout, format_command(command))
            raise CommandTimedOut(command, self.timeout) from error

        if result.returncode != 0:
            logger.warning("Command failed (exit %s): %s", result.returncode, result.stderr.strip())
            raise ExternalCommandFailed(command, result.returncode, result.stderr)
        return result.stdout
