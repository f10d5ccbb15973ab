from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True, frozen=True)
class InstanceRecord:
    instance_id: str
    instance_type: str
    state: str
    private_ip: str | None
    tags: dict[str, str] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.tags.get("Name", "")

    @property
    def display_name(self) -> str:
        return self.name or self.instance_id


@dataclass(slots=True, frozen=True)
class DisplayRow:
    instance_id: str
    instance_type: str
    name: str
    status: str
    private_ip: str
    detail: str

    @property
    def key(self) -> str:
        return self.instance_id

    def as_tuple(self) -> tuple[str, str, str, str, str, str]:
        return (
            self.instance_id,
            self.instance_type,
            self.name,
            self.status,
            self.private_ip,
            self.detail,
        )


@dataclass(slots=True, frozen=True)
class InstanceActionResult:
    instance_id: str
    ok: bool
    previous_state: str | None = None
    current_state: str | None = None
    message: str = ""

    @property
    def transition(self) -> str:
        if self.previous_state is None and self.current_state is None:
            return "-"
        return f"{self.previous_state or '?'} -> {self.current_state or '?'}"


@dataclass(slots=True, frozen=True)
class BulkActionReport:
    action: str
    instance_ids: tuple[str, ...]
    results: tuple[InstanceActionResult, ...]
    auto_selected: bool = False
    output: str = ""

    @property
    def succeeded(self) -> list[InstanceActionResult]:
        return [result for result in self.results if result.ok]

    @property
    def failed(self) -> list[InstanceActionResult]:
        return [result for result in self.results if not result.ok]

    @property
    def ok(self) -> bool:
        return not self.failed
