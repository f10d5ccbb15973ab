from __future__ import annotations

import shlex
from collections.abc import Sequence


class Ec2InventoryError(Exception):
    """Base class for every failure surfaced to the operator."""


class ToolNotFound(Ec2InventoryError):
    def __init__(self, tool: str) -> None:
        super().__init__(f"'{tool}' command not found. Ensure the AWS CLI is installed and on PATH.")
        self.tool = tool


class ExternalCommandFailed(Ec2InventoryError):
    def __init__(self, command: Sequence[str], returncode: int, stderr: str) -> None:
        detail = stderr.strip() or "no error output"
        super().__init__(f"{shlex.join(command)} exited with code {returncode}: {detail}")
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr


class CommandTimedOut(Ec2InventoryError):
    def __init__(self, command: Sequence[str], timeout: float) -> None:
        super().__init__(f"{shlex.join(command)} timed out after {timeout:g} seconds")
        self.command = list(command)
        self.timeout = timeout


class CommandBusy(Ec2InventoryError):
    def __init__(self) -> None:
        super().__init__("Another AWS CLI command is still running.")


class MalformedInventory(Ec2InventoryError):
    pass


class EmptySelection(Ec2InventoryError):
    def __init__(self) -> None:
        super().__init__("No instance is marked and no row is under the cursor.")


class ConfirmationRequired(Ec2InventoryError):
    def __init__(self, action: str, instance_ids: Sequence[str]) -> None:
        super().__init__(f"{action} of {', '.join(instance_ids)} requires explicit confirmation.")
        self.action = action
        self.instance_ids = list(instance_ids)
