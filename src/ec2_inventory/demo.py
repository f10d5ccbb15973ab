from __future__ import annotations

import json
import logging
import threading
from collections.abc import Sequence
from typing import Any

from .aws_cli import build_command, format_command, get_profile
from .errors import CommandBusy, ExternalCommandFailed

logger = logging.getLogger(__name__)

# subcommand -> (response key, target state)
_TRANSITIONS = {
    "start-instances": ("StartingInstances", "pending"),
    "stop-instances": ("StoppingInstances", "stopping"),
    "terminate-instances": ("TerminatingInstances", "shutting-down"),
}


def build_mock_instances() -> list[dict[str, Any]]:
    return [
        {
            "InstanceId": "i-0a1b2c3d4e5f60001",
            "InstanceType": "t3.micro",
            "PrivateIpAddress": "10.0.1.21",
            "State": {"Code": 16, "Name": "running"},
            "Tags": [{"Key": "Name", "Value": "demo-bastion"}, {"Key": "env", "Value": "demo"}],
            "Placement": {"AvailabilityZone": "us-west-1a"},
        },
        {
            "InstanceId": "i-0a1b2c3d4e5f60002",
            "InstanceType": "t3.small",
            "PrivateIpAddress": "10.0.2.34",
            "State": {"Code": 16, "Name": "running"},
            "Tags": [{"Key": "Name", "Value": "demo-app-01"}],
            "Placement": {"AvailabilityZone": "us-west-1b"},
        },
        {
            "InstanceId": "i-0a1b2c3d4e5f60003",
            "InstanceType": "t3.medium",
            "PrivateIpAddress": "10.0.3.10",
            "State": {"Code": 80, "Name": "stopped"},
            "Placement": {"AvailabilityZone": "us-west-1c"},
        },
    ]


class DemoAwsCliRunner:
    """Answers EC2 commands from an in-memory inventory instead of the AWS CLI."""

    tool = "aws"

    def __init__(self, instances: Sequence[dict[str, Any]] | None = None) -> None:
        self.instances = [dict(instance) for instance in (instances or build_mock_instances())]
        self.commands: list[list[str]] = []
        self._lock = threading.Lock()

    def is_available(self) -> bool:
        return True

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
            logger.info("$ %s (demo)", format_command(command))
            self.commands.append(list(command))
            return self._respond(list(command))
        finally:
            self._lock.release()

    def _respond(self, command: list[str]) -> str:
        tokens = command[command.index("ec2") + 1 :] if "ec2" in command else []
        subcommand = tokens[0] if tokens else ""
        requested = tokens[tokens.index("--instance-ids") + 1 :] if "--instance-ids" in tokens else []

        if subcommand == "describe-instances":
            instances = [item for item in self.instances if not requested or item["InstanceId"] in requested]
            return json.dumps({"Reservations": [{"Instances": instances}] if instances else []}, indent=4)

        if subcommand in _TRANSITIONS:
            response_key, target_state = _TRANSITIONS[subcommand]
            unknown = [instance_id for instance_id in requested if self._find(instance_id) is None]
            if unknown:
                stderr = (
                    f"An error occurred (InvalidInstanceID.NotFound) when calling the "
                    f"{subcommand} operation: The instance ID '{unknown[0]}' does not exist"
                )
                raise ExternalCommandFailed(command, 254, stderr)
            changes = [self._transition(self._find(instance_id), target_state) for instance_id in requested]
            return json.dumps({response_key: changes}, indent=4)

        raise ExternalCommandFailed(command, 252, f"Unsupported demo command: {format_command(command)}")

    def _find(self, instance_id: str) -> dict[str, Any] | None:
        for instance in self.instances:
            if instance["InstanceId"] == instance_id:
                return instance
        return None

    @staticmethod
    def _transition(instance: dict[str, Any], target_state: str) -> dict[str, Any]:
        previous = dict(instance["State"])
        instance["State"] = {"Name": target_state}
        return {"InstanceId": instance["InstanceId"], "PreviousState": previous, "CurrentState": {"Name": target_state}}
