from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from typing import Any

from .errors import MalformedInventory
from .models import InstanceRecord

TYPED_FIELDS = ("InstanceId", "InstanceType", "State", "PrivateIpAddress", "Tags")


def parse_inventory(text: str) -> list[InstanceRecord]:
    """Decode a ``describe-instances`` response into normalized records.

    Instances from every reservation are concatenated in response order.
    Any shape mismatch raises :class:`MalformedInventory`.
    """
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as error:
        raise MalformedInventory(f"Response is not valid JSON: {error}") from error

    if not isinstance(payload, dict):
        raise MalformedInventory("Response must be a JSON object.")
    reservations = payload.get("Reservations")
    if not isinstance(reservations, list):
        raise MalformedInventory("Response has no 'Reservations' array.")

    records: list[InstanceRecord] = []
    seen: set[str] = set()
    for index, reservation in enumerate(reservations):
        if not isinstance(reservation, dict):
            raise MalformedInventory(f"Reservation {index} is not an object.")
        instances = reservation.get("Instances")
        if not isinstance(instances, list):
            raise MalformedInventory(f"Reservation {index} has no 'Instances' array.")
        for instance in instances:
            record = normalize_instance(instance)
            if record.instance_id in seen:
                raise MalformedInventory(f"Instance {record.instance_id} appears more than once.")
            seen.add(record.instance_id)
            records.append(record)
    return records


def normalize_instance(instance: Any) -> InstanceRecord:
    if not isinstance(instance, dict):
        raise MalformedInventory("Instance entry is not an object.")

    instance_id = _required_str(instance, "InstanceId", "<unknown>")
    instance_type = _required_str(instance, "InstanceType", instance_id)
    state = instance.get("State")
    if not isinstance(state, dict) or not isinstance(state.get("Name"), str):
        raise MalformedInventory(f"Instance {instance_id} has no 'State.Name'.")

    private_ip = instance.get("PrivateIpAddress")
    if private_ip is not None and not isinstance(private_ip, str):
        raise MalformedInventory(f"Instance {instance_id} has a non-string 'PrivateIpAddress'.")

    try:
        tags_value = instance.get("Tags")
        tags = normalize_tags([] if tags_value is None else tags_value)
    except MalformedInventory as error:
        raise MalformedInventory(f"Instance {instance_id}: {error}") from error

    return InstanceRecord(
        instance_id=instance_id,
        instance_type=instance_type,
        state=state["Name"],
        private_ip=private_ip,
        tags=tags,
        extra={key: value for key, value in instance.items() if key not in TYPED_FIELDS},
    )


def normalize_tags(pairs: Any) -> dict[str, str]:
    if not isinstance(pairs, list):
        raise MalformedInventory("'Tags' is not an array.")

    tags: dict[str, str] = {}
    for pair in pairs:
        if not isinstance(pair, dict):
            raise MalformedInventory("Tag entry is not an object.")
        key = pair.get("Key")
        value = pair.get("Value")
        if not isinstance(key, str) or not isinstance(value, str):
            raise MalformedInventory("Tag entry is missing 'Key' or 'Value'.")
        if key in tags:
            raise MalformedInventory(f"Duplicate tag key '{key}'.")
        tags[key] = value
    return tags


def tags_to_pairs(tags: Mapping[str, str]) -> list[dict[str, str]]:
    return [{"Key": key, "Value": value} for key, value in tags.items()]


def instance_ids(records: Iterable[InstanceRecord]) -> list[str]:
    return [record.instance_id for record in records]


def _required_str(instance: dict[str, Any], field: str, instance_id: str) -> str:
    value = instance.get(field)
    if not isinstance(value, str) or not value:
        raise MalformedInventory(f"Instance {instance_id} has no '{field}'.")
    return value
