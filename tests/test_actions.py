"""
tests/test_actions.py - selection rules and bulk action dispatch
"""

import pytest

from conftest import ScriptedRunner, state_change_response
from ec2_inventory.actions import (
    INSPECT,
    START,
    STOP,
    TERMINATE,
    BulkActionController,
    Selection,
    action_tokens,
    parse_state_changes,
    resolve_targets,
)
from ec2_inventory.aws_cli import set_profile
from ec2_inventory.errors import (
    CommandTimedOut,
    ConfirmationRequired,
    EmptySelection,
    ExternalCommandFailed,
)

# =============================================================================
# Selection
# =============================================================================


class TestSelection:
    def test_ids_follow_display_order(self):
        selection = Selection(["i-a", "i-b", "i-c"])
        selection.mark("i-c")
        selection.mark("i-a")

        assert selection.ids == ["i-a", "i-c"]

    def test_cannot_mark_unknown_row(self):
        selection = Selection(["i-a"])

        assert selection.mark("i-z") is False
        assert len(selection) == 0

    def test_toggle(self):
        selection = Selection(["i-a"])

        assert selection.toggle("i-a") is True
        assert "i-a" in selection
        assert selection.toggle("i-a") is False
        assert "i-a" not in selection

    def test_replace_rows_drops_vanished_marks(self):
        selection = Selection(["i-a", "i-b"])
        selection.mark("i-a")
        selection.mark("i-b")

        selection.replace_rows(["i-b", "i-c"])

        assert selection.ids == ["i-b"]

    def test_clear(self):
        selection = Selection(["i-a", "i-b"])
        selection.mark("i-a")
        selection.clear()

        assert selection.ids == []


class TestResolveTargets:
    def test_marked_rows_win_over_cursor(self):
        selection = Selection(["i-a", "i-b", "i-c"])
        selection.mark("i-b")
        selection.mark("i-c")

        assert resolve_targets(selection, "i-a") == (["i-b", "i-c"], False)

    def test_empty_selection_widens_to_cursor_row(self):
        selection = Selection(["i-a", "i-b"])

        targets, auto_selected = resolve_targets(selection, "i-b")

        assert targets == ["i-b"]
        assert auto_selected is True
        assert selection.ids == ["i-b"]

    @pytest.mark.parametrize("cursor", [None, "i-gone"])
    def test_no_target_is_an_error(self, cursor):
        with pytest.raises(EmptySelection):
            resolve_targets(Selection(["i-a"]), cursor)


# =============================================================================
# BulkActionController
# =============================================================================


class TestDispatch:
    @pytest.mark.parametrize(
        "action, subcommand, key",
        [
            (START, "start-instances", "StartingInstances"),
            (STOP, "stop-instances", "StoppingInstances"),
        ],
    )
    def test_builds_command_and_reports_per_instance(self, action, subcommand, key):
        runner = ScriptedRunner(
            {subcommand: state_change_response(key, [("i-a", "stopped", "pending"), ("i-b", "stopped", "pending")])}
        )
        report = BulkActionController(runner).dispatch(action, ["i-a", "i-b"])

        assert runner.commands == [["aws", "ec2", subcommand, "--instance-ids", "i-a", "i-b"]]
        assert report.ok
        assert [result.instance_id for result in report.results] == ["i-a", "i-b"]
        assert report.results[0].transition == "stopped -> pending"

    def test_profile_is_included(self):
        set_profile("prod")
        runner = ScriptedRunner({"stop-instances": state_change_response("StoppingInstances", [])})

        BulkActionController(runner).stop(["i-a"])

        assert runner.commands[0][:3] == ["aws", "--profile", "prod"]

    def test_missing_instance_in_response_is_failed(self):
        runner = ScriptedRunner(
            {"start-instances": state_change_response("StartingInstances", [("i-a", "stopped", "pending")])}
        )
        report = BulkActionController(runner).start(["i-a", "i-b"])

        assert not report.ok
        assert [result.instance_id for result in report.succeeded] == ["i-a"]
        assert [result.instance_id for result in report.failed] == ["i-b"]
        assert "StartingInstances" in report.failed[0].message

    def test_command_failure_fails_every_target(self):
        error = ExternalCommandFailed(["aws"], 254, "InvalidInstanceID.NotFound")
        runner = ScriptedRunner({"stop-instances": error})

        report = BulkActionController(runner).stop(["i-a", "i-b"])

        assert len(report.failed) == 2
        assert all("InvalidInstanceID.NotFound" in result.message for result in report.failed)
        assert report.output == "InvalidInstanceID.NotFound"

    def test_timeout_fails_every_target(self):
        runner = ScriptedRunner({"start-instances": CommandTimedOut(["aws"], 5)})

        report = BulkActionController(runner).start(["i-a"])

        assert not report.ok
        assert "timed out" in report.failed[0].message

    def test_terminate_requires_confirmation(self):
        runner = ScriptedRunner()

        with pytest.raises(ConfirmationRequired):
            BulkActionController(runner).terminate(["i-a"])
        assert runner.commands == []

    def test_terminate_when_confirmed(self):
        runner = ScriptedRunner(
            {
                "terminate-instances": state_change_response(
                    "TerminatingInstances", [("i-a", "running", "shutting-down")]
                )
            }
        )
        report = BulkActionController(runner).terminate(["i-a"], confirmed=True)

        assert runner.commands == [["aws", "ec2", "terminate-instances", "--instance-ids", "i-a"]]
        assert report.results[0].current_state == "shutting-down"

    def test_auto_selected_flag_is_carried(self):
        runner = ScriptedRunner({"stop-instances": state_change_response("StoppingInstances", [])})

        report = BulkActionController(runner).stop(["i-a"], auto_selected=True)

        assert report.auto_selected is True

    def test_empty_target_list_rejected(self):
        with pytest.raises(EmptySelection):
            BulkActionController(ScriptedRunner()).start([])

    def test_unknown_action_rejected(self):
        with pytest.raises(ValueError):
            BulkActionController(ScriptedRunner()).dispatch(INSPECT, ["i-a"])

    def test_results_are_journaled(self, history_store):
        set_profile("prod")
        runner = ScriptedRunner(
            {"stop-instances": state_change_response("StoppingInstances", [("i-a", "running", "stopping")])}
        )
        BulkActionController(runner, history=history_store).stop(["i-a", "i-b"])

        records = {record.instance_id: record for record in history_store.list_recent()}
        assert records["i-a"].outcome == "succeeded"
        assert records["i-a"].current_state == "stopping"
        assert records["i-a"].profile == "prod"
        assert records["i-b"].outcome == "failed"
        assert records["i-a"].batch_id == records["i-b"].batch_id


class TestActionTokens:
    @pytest.mark.parametrize(
        "action, subcommand",
        [
            (START, "start-instances"),
            (STOP, "stop-instances"),
            (TERMINATE, "terminate-instances"),
            (INSPECT, "describe-instances"),
        ],
    )
    def test_tokens_per_action(self, action, subcommand):
        assert action_tokens(action, ["i-a", "i-b"]) == ("ec2", subcommand, "--instance-ids", "i-a", "i-b")

    def test_unknown_action(self):
        with pytest.raises(ValueError):
            action_tokens("reboot", ["i-a"])


class TestInspect:
    def test_returns_raw_output_verbatim(self):
        raw = '{\n    "Reservations": []\n}\n'
        runner = ScriptedRunner({"describe-instances": raw})

        assert BulkActionController(runner).inspect(["i-a", "i-b"]) == raw
        assert runner.commands == [["aws", "ec2", "describe-instances", "--instance-ids", "i-a", "i-b"]]

    def test_errors_propagate(self):
        runner = ScriptedRunner({"describe-instances": ExternalCommandFailed(["aws"], 255, "denied")})

        with pytest.raises(ExternalCommandFailed):
            BulkActionController(runner).inspect(["i-a"])


class TestParseStateChanges:
    @pytest.mark.parametrize("output", ["", "not json", "[]", '{"StartingInstances": {}}'])
    def test_unreadable_output_fails_each_id(self, output):
        results = parse_state_changes(output, "StartingInstances", ["i-a", "i-b"])

        assert [result.ok for result in results] == [False, False]

    def test_missing_state_names(self):
        (result,) = parse_state_changes('{"StoppingInstances": [{"InstanceId": "i-a"}]}', "StoppingInstances", ["i-a"])

        assert result.ok
        assert result.transition == "-"
