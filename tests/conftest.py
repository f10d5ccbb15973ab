"""
tests/conftest.py - shared fixtures

Canned describe-instances payloads, a scripted AWS CLI runner and a
temporary action history store.
"""

import json
from collections.abc import Callable

import pytest

from ec2_inventory import aws_cli
from ec2_inventory.aws_cli import build_command, get_profile
from ec2_inventory.history import ActionHistoryStore


class ScriptedRunner:
    """Runner double: answers by subcommand and records every argument vector."""

    tool = "aws"

    def __init__(self, responses=None):
        self.responses: dict[str, str | Exception | Callable[[list[str]], str]] = dict(responses or {})
        self.commands: list[list[str]] = []

    def is_available(self):
        return True

    def command(self, *tokens):
        return build_command(*tokens, profile=get_profile(), tool=self.tool)

    def aws(self, *tokens):
        command = self.command(*tokens)
        self.commands.append(command)
        response = self.responses.get(tokens[1] if len(tokens) > 1 else "", "")
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(command)
        return response


@pytest.fixture(autouse=True)
def reset_profile(monkeypatch):
    """Every test starts without a profile."""
    monkeypatch.setattr(aws_cli, "_profile", None)


@pytest.fixture
def web1_payload():
    return {
        "Reservations": [
            {
                "Instances": [
                    {
                        "InstanceId": "i-1",
                        "InstanceType": "t2.micro",
                        "PrivateIpAddress": "10.0.0.5",
                        "State": {"Name": "running"},
                        "Tags": [{"Key": "Name", "Value": "web1"}],
                    }
                ]
            }
        ]
    }


@pytest.fixture
def multi_reservation_payload():
    return {
        "Reservations": [
            {
                "ReservationId": "r-1",
                "Instances": [
                    {
                        "InstanceId": "i-a",
                        "InstanceType": "t3.micro",
                        "PrivateIpAddress": "10.0.0.1",
                        "State": {"Code": 16, "Name": "running"},
                        "Tags": [{"Key": "Name", "Value": "api"}, {"Key": "env", "Value": "prod"}],
                    },
                    {
                        "InstanceId": "i-b",
                        "InstanceType": "t3.small",
                        "PrivateIpAddress": "10.0.0.2",
                        "State": {"Code": 80, "Name": "stopped"},
                    },
                ],
            },
            {
                "ReservationId": "r-2",
                "Instances": [
                    {
                        "InstanceId": "i-c",
                        "InstanceType": "m5.large",
                        "PrivateIpAddress": None,
                        "State": {"Code": 48, "Name": "terminated"},
                        "Tags": [],
                        "Placement": {"AvailabilityZone": "us-west-1a"},
                    }
                ],
            },
        ]
    }


@pytest.fixture
def scripted_runner(multi_reservation_payload):
    return ScriptedRunner({"describe-instances": json.dumps(multi_reservation_payload)})


@pytest.fixture
def history_store(tmp_path):
    return ActionHistoryStore(tmp_path / "history.db")


def state_change_response(key, transitions):
    """Build a start/stop/terminate response body from (id, previous, current) triples."""
    return json.dumps(
        {
            key: [
                {
                    "InstanceId": instance_id,
                    "PreviousState": {"Name": previous},
                    "CurrentState": {"Name": current},
                }
                for instance_id, previous, current in transitions
            ]
        }
    )
