from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import cast

from textual import on, work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.css.query import NoMatches
from textual.screen import ModalScreen
from textual.widgets import Button, DataTable, Footer, Header, Input, Label, Log, Select, Static, TextArea
from textual.worker import Worker, WorkerState

if __package__ in (None, ""):
    sys.path.append(str(Path(__file__).resolve().parents[1]))
    from ec2_inventory.actions import (
        INSPECT,
        START,
        STOP,
        TERMINATE,
        BulkActionController,
        action_tokens,
        CommandRunner,
        Selection,
        resolve_targets,
    )
    from ec2_inventory.aws_cli import AwsCliRunner, format_command, get_profile, list_profiles, set_profile
    from ec2_inventory.config import AppConfig, load_app_config
    from ec2_inventory.demo import DemoAwsCliRunner
    from ec2_inventory.errors import EmptySelection
    from ec2_inventory.history import ActionHistoryStore, ActionRecord
    from ec2_inventory.inventory import parse_inventory
    from ec2_inventory.models import BulkActionReport, DisplayRow, InstanceRecord
    from ec2_inventory.table import COLUMNS, project_rows, truncate
else:
    from .actions import (
        INSPECT,
        START,
        STOP,
        TERMINATE,
        BulkActionController,
        action_tokens,
        CommandRunner,
        Selection,
        resolve_targets,
    )
    from .aws_cli import AwsCliRunner, format_command, get_profile, list_profiles, set_profile
    from .config import AppConfig, load_app_config
    from .demo import DemoAwsCliRunner
    from .errors import EmptySelection
    from .history import ActionHistoryStore, ActionRecord
    from .inventory import parse_inventory
    from .models import BulkActionReport, DisplayRow, InstanceRecord
    from .table import COLUMNS, project_rows, truncate

MARK_COLUMN = "mark"
MARKED = "*"
AWS_WORKERS = frozenset({"load-instances", "bulk-action", "inspect"})


class ProfileScreen(ModalScreen[str | None]):
    """Returns the new profile name, an empty string to clear it, or None on cancel."""

    BINDINGS = [Binding("escape", "cancel", "Cancel")]

    def __init__(self, current: str | None, known_profiles: Sequence[str]) -> None:
        super().__init__()
        self.current = current or ""
        self.known_profiles = list(known_profiles)

    def compose(self) -> ComposeResult:
        with Vertical(id="profile-modal"):
            yield Label("Set AWS profile", id="profile-modal-title")
            yield Label("Known profiles")
            yield Select(
                [(name, name) for name in self.known_profiles],
                prompt="Pick a profile",
                id="known-profile",
            )
            yield Label("Profile name (blank = AWS CLI default)")
            yield Input(value=self.current, placeholder="default", id="profile-name")
            with Horizontal(id="profile-modal-buttons"):
                yield Button("Cancel", id="cancel-profile")
                yield Button("Clear", id="clear-profile")
                yield Button("Apply", variant="primary", id="apply-profile")

    @on(Select.Changed, "#known-profile")
    def on_known_profile_changed(self, event: Select.Changed) -> None:
        if event.value == Select.BLANK:
            return
        self.query_one("#profile-name", Input).value = str(event.value)

    async def action_cancel(self) -> None:
        self.dismiss(None)

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        self.dismiss(event.value.strip())

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        match event.button.id:
            case "cancel-profile":
                self.dismiss(None)
            case "clear-profile":
                self.dismiss("")
            case "apply-profile":
                self.dismiss(self.query_one("#profile-name", Input).value.strip())


class InspectScreen(ModalScreen[None]):
    BINDINGS = [Binding("escape", "close", "Close")]

    def __init__(self, instance_ids: Sequence[str], output: str) -> None:
        super().__init__()
        self.instance_ids = list(instance_ids)
        self.output = output

    def compose(self) -> ComposeResult:
        with Vertical(id="inspect-modal"):
            yield Label(f"describe-instances: {', '.join(self.instance_ids)}", id="inspect-modal-title")
            yield TextArea(self.output, read_only=True, id="inspect-output")
            with Horizontal(id="inspect-modal-buttons"):
                yield Button("Close", id="inspect-close")

    def action_close(self) -> None:
        self.dismiss(None)

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "inspect-close":
            self.dismiss(None)


class TerminateConfirmScreen(ModalScreen[bool]):
    BINDINGS = [Binding("escape", "cancel", "Cancel")]

    def __init__(self, rows: Sequence[DisplayRow]) -> None:
        super().__init__()
        self.rows = list(rows)

    def compose(self) -> ComposeResult:
        with Vertical(id="terminate-modal"):
            yield Label("Terminate instances?", id="terminate-modal-title")
            count = len(self.rows)
            suffix = "s" if count != 1 else ""
            yield Static(
                f"{count} instance{suffix} will be terminated. This cannot be undone.",
                id="terminate-modal-body",
            )
            yield DataTable(id="terminate-table")
            with Horizontal(id="terminate-modal-buttons"):
                yield Button("Cancel", id="terminate-cancel")
                yield Button("Terminate", variant="error", id="terminate-confirm")

    def on_mount(self) -> None:
        table = self.query_one("#terminate-table", DataTable)
        table.cursor_type = "row"
        table.add_columns("Instance ID", "Name", "Type", "Status")
        for row in self.rows:
            table.add_row(row.instance_id, row.name or "-", row.instance_type, row.status)
        self.query_one("#terminate-cancel", Button).focus()

    async def action_cancel(self) -> None:
        self.dismiss(False)

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(event.button.id == "terminate-confirm")


class ActionHistoryScreen(ModalScreen[None]):
    BINDINGS = [Binding("escape", "close", "Close")]

    def __init__(self, records: Sequence[ActionRecord]) -> None:
        super().__init__()
        self.records = list(records)

    def compose(self) -> ComposeResult:
        with Vertical(id="history-modal"):
            yield Label("Action History", id="history-modal-title")
            yield DataTable(id="history-table")
            with Horizontal(id="history-modal-buttons"):
                yield Button("Close", id="history-close")

    def on_mount(self) -> None:
        table = self.query_one("#history-table", DataTable)
        table.cursor_type = "row"
        table.add_columns("When", "Action", "Instance ID", "Profile", "Outcome", "State", "Message")
        for record in self.records:
            table.add_row(
                _format_timestamp(record.started_at),
                record.action,
                record.instance_id,
                record.profile or "-",
                record.outcome,
                f"{record.previous_state or '?'} -> {record.current_state or '?'}",
                truncate(record.message or "", 60),
            )
        if self.records:
            table.move_cursor(row=0, column=0)

    def action_close(self) -> None:
        self.dismiss(None)

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "history-close":
            self.dismiss(None)


class Ec2InventoryApp(App[None]):
    CSS_PATH = "styles.tcss"
    TITLE = "EC2 Inventory"
    BINDINGS = [
        Binding("space", "toggle_mark", "Mark"),
        Binding("i", "inspect", "Inspect"),
        Binding("s", "start", "Start"),
        Binding("x", "stop", "Stop"),
        Binding("t", "terminate", "Terminate"),
        Binding("p", "set_profile", "Profile"),
        Binding("r", "refresh", "Refresh"),
        Binding("h", "history", "History"),
        Binding("u", "clear_marks", "Unmark all", show=False),
        Binding("q", "quit", "Quit"),
    ]

    def __init__(
        self,
        *,
        config: AppConfig | None = None,
        runner: CommandRunner | None = None,
        history: ActionHistoryStore | None = None,
    ) -> None:
        super().__init__()
        self.config = config or AppConfig()
        self.runner = runner or AwsCliRunner(tool=self.config.tool, timeout=self.config.timeout_seconds)
        self.history = history
        self.controller = BulkActionController(self.runner, history=self.history)
        self.selection = Selection()
        self.rows: dict[str, DisplayRow] = {}
        self.busy = False
        if self.config.profile:
            set_profile(self.config.profile)

    def compose(self) -> ComposeResult:
        yield Header()
        yield DataTable(id="instance-table")
        yield Static("Loading instances...", id="status")
        yield Log(highlight=False, max_lines=500, auto_scroll=True, id="activity-log")
        yield Footer()

    def on_mount(self) -> None:
        table = self.query_one("#instance-table", DataTable)
        table.cursor_type = "row"
        table.add_column(" ", key=MARK_COLUMN)
        for label in COLUMNS:
            table.add_column(label, key=label)
        self._update_subtitle()

        is_available = getattr(self.runner, "is_available", None)
        if is_available is not None and not is_available():
            self._log("AWS CLI not found on PATH; commands will fail until it is installed.")
            self.notify("AWS CLI not found.", severity="warning")
        if self.history is not None:
            self._log(f"Action history file: {self.history.path}")
        self._log("Space marks rows; actions apply to marked rows or the row under the cursor.")
        self.set_focus(table)
        self.action_refresh()

    @work(thread=True, exclusive=True, exit_on_error=False, name="load-instances")
    def load_instances(self) -> list[InstanceRecord]:
        return parse_inventory(self.runner.aws("ec2", "describe-instances"))

    @work(thread=True, exit_on_error=False, name="bulk-action")
    def run_bulk_action(
        self,
        action: str,
        instance_ids: list[str],
        auto_selected: bool,
        confirmed: bool,
    ) -> BulkActionReport:
        return self.controller.dispatch(
            action,
            instance_ids,
            confirmed=confirmed,
            auto_selected=auto_selected,
        )

    @work(thread=True, exit_on_error=False, name="inspect")
    def run_inspect(self, instance_ids: list[str]) -> tuple[list[str], str]:
        return instance_ids, self.controller.inspect(instance_ids)

    def on_worker_state_changed(self, event: Worker.StateChanged) -> None:
        worker = event.worker
        if worker.name not in AWS_WORKERS:
            return

        if worker.state == WorkerState.SUCCESS:
            self.busy = False
            match worker.name:
                case "load-instances":
                    self._on_instances_loaded(cast(list[InstanceRecord], worker.result))
                case "bulk-action":
                    self._on_bulk_action_done(cast(BulkActionReport, worker.result))
                case "inspect":
                    instance_ids, output = cast(tuple[list[str], str], worker.result)
                    self._set_status(f"Inspected {len(instance_ids)} instance(s).")
                    self._log(f"Inspected {', '.join(instance_ids)}.")
                    self.push_screen(InspectScreen(instance_ids, output))
            return

        if worker.state in (WorkerState.ERROR, WorkerState.CANCELLED):
            self.busy = False
            error = worker.error
            if worker.name == "load-instances" and worker.state == WorkerState.ERROR:
                self._replace_rows({})
            self._set_status(f"{worker.name} failed: {error}")
            self._log(f"{worker.name} failed: {error}")
            if error is not None:
                self.notify(str(error), severity="error")

    def action_refresh(self) -> None:
        if not self._claim("Refresh"):
            return
        self._set_status(f"Loading instances ({self._profile_label()})...")
        self._log(f"Refreshing instances ({self._profile_label()}).")
        self._echo_command("ec2", "describe-instances")
        self.load_instances()

    def action_toggle_mark(self) -> None:
        instance_id = self._cursor_instance_id()
        if instance_id is None:
            return
        self.selection.toggle(instance_id)
        self._render_mark(instance_id)
        self._set_status(f"{len(self.selection)} instance(s) marked.")

    def action_clear_marks(self) -> None:
        marked = self.selection.ids
        self.selection.clear()
        for instance_id in marked:
            self._render_mark(instance_id)
        self._set_status("Marks cleared.")

    def action_inspect(self) -> None:
        self._begin_action(INSPECT)

    def action_start(self) -> None:
        self._begin_action(START)

    def action_stop(self) -> None:
        self._begin_action(STOP)

    def action_terminate(self) -> None:
        self._begin_action(TERMINATE)

    def action_set_profile(self) -> None:
        self.push_screen(
            ProfileScreen(get_profile(), list_profiles()),
            callback=self._on_profile_dismissed,
        )

    def action_history(self) -> None:
        if self.history is None:
            self.notify("Action history is disabled.", severity="warning")
            return
        self.push_screen(ActionHistoryScreen(self.history.list_recent()))

    def _on_profile_dismissed(self, profile: str | None) -> None:
        if profile is None:
            self._log("Profile change cancelled.")
            return
        set_profile(profile)
        self._update_subtitle()
        self._log(f"Profile set to {self._profile_label()}.")
        self.action_refresh()

    def _begin_action(self, action: str) -> None:
        if self.busy:
            self._reject_busy(action)
            return
        try:
            targets, auto_selected = resolve_targets(self.selection, self._cursor_instance_id())
        except EmptySelection as error:
            self.notify(str(error), severity="warning")
            self._log(f"{action.capitalize()} requested with no target: {error}")
            return
        if auto_selected:
            self._render_mark(targets[0])
            self._log(f"Nothing marked; {action} applies to {targets[0]}.")

        if action == TERMINATE:
            self.push_screen(
                TerminateConfirmScreen([self.rows[instance_id] for instance_id in targets]),
                callback=lambda confirmed: self._on_terminate_confirmed(targets, auto_selected, confirmed),
            )
            return

        if not self._claim(action.capitalize()):
            return
        if action == INSPECT:
            self._set_status(f"Inspecting {len(targets)} instance(s)...")
            self._echo_command(*action_tokens(INSPECT, targets))
            self.run_inspect(targets)
            return
        self._set_status(f"Sending {action} for {len(targets)} instance(s)...")
        self._echo_command(*action_tokens(action, targets))
        self.run_bulk_action(action, targets, auto_selected, False)

    def _on_terminate_confirmed(self, targets: list[str], auto_selected: bool, confirmed: bool | None) -> None:
        if not confirmed:
            if auto_selected:
                self.selection.unmark(targets[0])
                self._render_mark(targets[0])
            self._log(f"Terminate cancelled for {', '.join(targets)}.")
            self._set_status("Terminate cancelled.")
            return
        if not self._claim("Terminate"):
            return
        self._set_status(f"Terminating {len(targets)} instance(s)...")
        self._log(f"Terminate confirmed for {', '.join(targets)}.")
        self._echo_command(*action_tokens(TERMINATE, targets))
        self.run_bulk_action(TERMINATE, targets, auto_selected, True)

    def _on_instances_loaded(self, records: list[InstanceRecord]) -> None:
        rows = project_rows(records, detail_width=self.config.detail_width)
        self._replace_rows(rows)
        message = f"Loaded {len(rows)} instances ({self._profile_label()})."
        self._set_status(message)
        self._log(message)

    def _on_bulk_action_done(self, report: BulkActionReport) -> None:
        for result in report.results:
            if result.ok:
                self._log(f"{report.action} {result.instance_id}: {result.transition}")
            else:
                self._log(f"{report.action} {result.instance_id} failed: {result.message}")

        summary = f"{report.action}: {len(report.succeeded)} succeeded, {len(report.failed)} failed."
        self._set_status(summary)
        self.notify(summary, severity="information" if report.ok else "error")
        self.action_clear_marks()
        self.action_refresh()

    def _replace_rows(self, rows: dict[str, DisplayRow]) -> None:
        self.rows = rows
        self.selection.replace_rows(rows)
        table = self.query_one("#instance-table", DataTable)
        table.clear(columns=False)
        for instance_id, row in rows.items():
            table.add_row(MARKED if instance_id in self.selection else "", *row.as_tuple(), key=instance_id)
        if rows:
            table.move_cursor(row=0, column=0)

    def _render_mark(self, instance_id: str) -> None:
        if instance_id not in self.rows:
            return
        table = self.query_one("#instance-table", DataTable)
        table.update_cell(instance_id, MARK_COLUMN, MARKED if instance_id in self.selection else "")

    def _cursor_instance_id(self) -> str | None:
        table = self.query_one("#instance-table", DataTable)
        try:
            row = table.cursor_row
            if row < 0:
                raise IndexError
            return list(self.rows)[row]
        except IndexError:
            return None

    def _echo_command(self, *tokens: str) -> None:
        self._log(f"$ {format_command(self.runner.command(*tokens))}")

    def _claim(self, label: str) -> bool:
        if self.busy:
            self._reject_busy(label)
            return False
        self.busy = True
        return True

    def _reject_busy(self, label: str) -> None:
        self.notify("Busy: another AWS CLI command is still running.", severity="warning")
        self._log(f"{label} rejected; another AWS CLI command is still running.")

    def _profile_label(self) -> str:
        return f"profile {get_profile()}" if get_profile() else "default profile"

    def _update_subtitle(self) -> None:
        self.sub_title = self._profile_label()

    def _set_status(self, message: str) -> None:
        try:
            self.query_one("#status", Static).update(message)
        except NoMatches:
            return

    def _log(self, message: str) -> None:
        timestamp = datetime.now().strftime("%H:%M:%S")
        try:
            self.query_one("#activity-log", Log).write_line(f"[{timestamp}] {message}")
        except NoMatches:
            return


def _format_timestamp(value: str | None) -> str:
    if not value:
        return "-"
    return value.replace("T", " ").replace("+00:00", "Z")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="EC2 inventory TUI backed by the AWS CLI")
    parser.add_argument("--profile", default=None, help="AWS CLI profile name")
    parser.add_argument(
        "--config",
        default="ec2-inventory.yaml",
        help="YAML file with tool, profile, timeout and history settings",
    )
    parser.add_argument("--history-file", default=None, help="SQLite file used to record bulk actions")
    parser.add_argument("--timeout", type=float, default=None, help="Seconds to wait for each AWS CLI call")
    parser.add_argument("--log-file", default=None, help="Write diagnostic logs to this file")
    parser.add_argument("--demo", action="store_true", help="Use built-in demo instances instead of the AWS CLI")
    return parser.parse_args(argv)


def build_app(args: argparse.Namespace) -> Ec2InventoryApp:
    config = load_app_config(args.config).with_overrides(
        profile=args.profile,
        history_file=args.history_file,
        timeout_seconds=args.timeout,
    )
    if args.demo:
        # demo actions are never journaled
        return Ec2InventoryApp(config=config, runner=DemoAwsCliRunner(), history=None)
    runner = AwsCliRunner(tool=config.tool, timeout=config.timeout_seconds)
    return Ec2InventoryApp(config=config, runner=runner, history=ActionHistoryStore(config.history_file))


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    if args.log_file:
        logging.basicConfig(
            filename=args.log_file,
            level=logging.INFO,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    app = build_app(args)
    try:
        app.run()
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
