from __future__ import annotations

import json
from collections.abc import Iterable

from .models import DisplayRow, InstanceRecord

COLUMNS = ("InstanceId", "Type", "Name", "Status", "PrivateIP", "Detail")
MISSING_IP = "-"
DEFAULT_DETAIL_WIDTH = 80


def project_instance(record: InstanceRecord, detail_width: int = DEFAULT_DETAIL_WIDTH) -> DisplayRow:
    return DisplayRow(
        instance_id=record.instance_id,
        instance_type=record.instance_type,
        name=record.name,
        status=record.state,
        private_ip=record.private_ip or MISSING_IP,
        detail=truncate(_detail_text(record), detail_width),
    )


def project_rows(
    records: Iterable[InstanceRecord],
    detail_width: int = DEFAULT_DETAIL_WIDTH,
) -> dict[str, DisplayRow]:
    rows: dict[str, DisplayRow] = {}
    for record in records:
        row = project_instance(record, detail_width=detail_width)
        rows[row.key] = row
    return rows


def _detail_text(record: InstanceRecord) -> str:
    return json.dumps(record.extra, sort_keys=True, separators=(",", ":"), default=str)


def truncate(value: str, max_length: int) -> str:
    if max_length < 4 or len(value) <= max_length:
        return value
    return f"{value[: max_length - 3]}..."
