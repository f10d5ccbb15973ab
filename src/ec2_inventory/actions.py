from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterable, Sequence
from typing import Any, Protocol

from .aws_cli import get_profile
from .errors import CommandTimedOut, ConfirmationRequired, EmptySelection, ExternalCommandFailed
from .history import ActionHistoryStore
from .models import BulkActionReport, InstanceActionResult

START = "start"
STOP = "stop"
TERMINATE = "terminate"
INSPECT = "inspect"

# action -> (ec2 subcommand, response key)
STATE_CHANGE_ACTIONS: dict[str, tuple[str, str]] = {
    START: ("start-instances", "StartingInstances"),
    STOP: ("stop-instances", "StoppingInstances"),
    TERMINATE: ("terminate-instances", "TerminatingInstances"),
}
CONFIRMATION_ACTIONS = frozenset({TERMINATE})

logger = logging.getLogger(__name__)


class CommandRunner(Protocol):
    def command(self, *tokens: str) -> list[str]: ...

    def aws(self, *tokens: str) -> str: ...


def action_tokens(action: str, instance_ids: Sequence[str]) -> tuple[str, ...]:
    """AWS CLI tokens (after the tool and profile) for an action on the given ids."""
    if action == INSPECT:
        return ("ec2", "describe-instances", "--instance-ids", *instance_ids)
    try:
        subcommand, _ = STATE_CHANGE_ACTIONS[action]
    except KeyError:
        raise ValueError(f"Unknown bulk action: {action}") from None
    return ("ec2", subcommand, "--instance-ids", *instance_ids)


class Selection:
    """Marked instance ids, limited to the rows currently on display."""

    def __init__(self, available: Iterable[str] = ()) -> None:
        self._available: list[str] = list(available)
        self._marked: set[str] = set()

    def replace_rows(self, available: Iterable[str]) -> None:
        self._available = list(available)
        self._marked.intersection_update(self._available)

    def mark(self, instance_id: str) -> bool:
        if instance_id not in self._available:
            return False
        self._marked.add(instance_id)
        return True

    def unmark(self, instance_id: str) -> None:
        self._marked.discard(instance_id)

    def toggle(self, instance_id: str) -> bool:
        if instance_id in self._marked:
            self._marked.discard(instance_id)
            return False
        return self.mark(instance_id)

    def clear(self) -> None:
        self._marked.clear()

    def is_marked(self, instance_id: str) -> bool:
        return instance_id in self._marked

    @property
    def ids(self) -> list[str]:
        return [instance_id for instance_id in self._available if instance_id in self._marked]

    def __len__(self) -> int:
        return len(self._marked)

    def __contains__(self, instance_id: object) -> bool:
        return instance_id in self._marked


def resolve_targets(selection: Selection, cursor_id: str | None) -> tuple[list[str], bool]:
    """Return the action targets, marking the cursor row when nothing is marked.

    The second value is True when the selection was widened to the cursor row.
    """
    if len(selection):
        return selection.ids, False
    if cursor_id is None or not selection.mark(cursor_id):
        raise EmptySelection()
    logger.info("Nothing marked; using cursor row %s", cursor_id)
    return [cursor_id], True


class BulkActionController:
    def __init__(self, runner: CommandRunner, history: ActionHistoryStore | None = None) -> None:
        self.runner = runner
        self.history = history

    def start(self, instance_ids: Sequence[str], *, auto_selected: bool = False) -> BulkActionReport:
        return self.dispatch(START, instance_ids, auto_selected=auto_selected)

    def stop(self, instance_ids: Sequence[str], *, auto_selected: bool = False) -> BulkActionReport:
        return self.dispatch(STOP, instance_ids, auto_selected=auto_selected)

    def terminate(
        self,
        instance_ids: Sequence[str],
        *,
        confirmed: bool = False,
        auto_selected: bool = False,
    ) -> BulkActionReport:
        return self.dispatch(TERMINATE, instance_ids, confirmed=confirmed, auto_selected=auto_selected)

    def inspect(self, instance_ids: Sequence[str]) -> str:
        if not instance_ids:
            raise EmptySelection()
        return self.runner.aws(*action_tokens(INSPECT, instance_ids))

    def dispatch(
        self,
        action: str,
        instance_ids: Sequence[str],
        *,
        confirmed: bool = False,
        auto_selected: bool = False,
    ) -> BulkActionReport:
        try:
            _, response_key = STATE_CHANGE_ACTIONS[action]
        except KeyError:
            raise ValueError(f"Unknown bulk action: {action}") from None
        if not instance_ids:
            raise EmptySelection()
        if action in CONFIRMATION_ACTIONS and not confirmed:
            raise ConfirmationRequired(action, instance_ids)

        targets = tuple(instance_ids)
        try:
            output = self.runner.aws(*action_tokens(action, targets))
        except (ExternalCommandFailed, CommandTimedOut) as error:
            results = tuple(
                InstanceActionResult(instance_id=instance_id, ok=False, message=str(error))
                for instance_id in targets
            )
            output = getattr(error, "stderr", "") or str(error)
        else:
            results = parse_state_changes(output, response_key, targets)

        report = BulkActionReport(
            action=action,
            instance_ids=targets,
            results=results,
            auto_selected=auto_selected,
            output=output,
        )
        self._journal(report)
        return report

    def _journal(self, report: BulkActionReport) -> None:
        if self.history is None:
            return
        try:
            self.history.record_report(report, profile=get_profile())
        except sqlite3.Error:
            logger.exception("Could not record %s action in %s", report.action, self.history.path)


def parse_state_changes(
    output: str,
    response_key: str,
    instance_ids: Sequence[str],
) -> tuple[InstanceActionResult, ...]:
    """Map a start/stop/terminate response onto one result per requested id."""
    try:
        payload = json.loads(output) if output.strip() else {}
    except json.JSONDecodeError:
        payload = {}
    changes = payload.get(response_key) if isinstance(payload, dict) else None

    by_id: dict[str, dict[str, Any]] = {}
    for change in changes if isinstance(changes, list) else []:
        if isinstance(change, dict) and isinstance(change.get("InstanceId"), str):
            by_id[change["InstanceId"]] = change

    results: list[InstanceActionResult] = []
    for instance_id in instance_ids:
        change = by_id.get(instance_id)
        if change is None:
            results.append(
                InstanceActionResult(
                    instance_id=instance_id,
                    ok=False,
                    message=f"No state change reported under '{response_key}'.",
                )
            )
            continue
        results.append(
            InstanceActionResult(
                instance_id=instance_id,
                ok=True,
                previous_state=_state_name(change.get("PreviousState")),
                current_state=_state_name(change.get("CurrentState")),
            )
        )
    return tuple(results)


def _state_name(state: Any) -> str | None:
    if isinstance(state, dict) and isinstance(state.get("Name"), str):
        return state["Name"]
    return None
