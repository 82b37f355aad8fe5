"""Tests for parameter, preview and run models and cancel tokens."""

from pathlib import Path

import pytest

from stackforge.cancellation import CancelToken
from stackforge.exceptions import ConfigurationError, OperationCancelled, StateError
from stackforge.models.params import InitParams, ProvisionOptions, ProvisionParams, StackParams
from stackforge.models.preview import OperationKind, PreviewResult, ResourceChange, render_summary
from stackforge.models.run import ProvisionRun, RunStatus, StackStatus
from stackforge.models.stack import ProviderBinding, StackSpec


def make_specs(*names):
    return [
        StackSpec(name=name, source_path=Path(name) / "server.yaml", provider=ProviderBinding(type="fake"))
        for name in names
    ]


class TestParams:
    def test_options_accept_aliases(self):
        options = ProvisionOptions.from_mapping({"SkipRefresh": True, "skip-preview": False})

        assert options == ProvisionOptions(skip_refresh=True, skip_preview=False)

    def test_unknown_option_rejected(self):
        with pytest.raises(ConfigurationError, match="Unknown provision option"):
            ProvisionParams(options={"SkipRefresh": True, "Force": True})

    def test_option_must_be_boolean(self):
        with pytest.raises(ConfigurationError):
            ProvisionOptions(skip_refresh="yes")

    def test_selector_normalized(self):
        params = StackParams(stacks=[" web ", "api", "web"])

        assert params.stacks == ("web", "api")
        assert params.matches("api")
        assert not params.matches("db")
        assert StackParams().matches("anything")

    def test_selector_must_not_be_a_string(self):
        with pytest.raises(ConfigurationError):
            ProvisionParams(stacks="web")

    def test_profile_required(self):
        with pytest.raises(ConfigurationError):
            InitParams(profile=" ")


class TestPreviewResult:
    def test_summary_order_and_zero_counts(self):
        counts = {OperationKind.DELETE: 1, OperationKind.CREATE: 2, OperationKind.NO_OP: 4}

        assert render_summary(counts) == "2 to create, 1 to delete"
        assert render_summary({}) == "no changes"

    def test_from_changes(self):
        result = PreviewResult.from_changes(
            "app",
            [ResourceChange("b", OperationKind.UPDATE), ResourceChange("a", OperationKind.CREATE)],
        )

        assert [change.resource for change in result.changes] == ["a", "b"]
        assert result.count("create") == 1
        assert result.total_changes == 2
        assert result.to_dict()["changes"][1] == {"resource": "b", "operation": "update"}


class TestProvisionRun:
    def test_lifecycle(self):
        run = ProvisionRun(make_specs("a", "b"))

        assert run.start("a")
        run.finish("a", StackStatus.SUCCEEDED, outputs={"url": "x"})
        assert run.start("b")
        run.finish("b", StackStatus.SUCCEEDED)

        report = run.report()
        assert report.status == RunStatus.COMPLETED
        assert report.outcome("a").outputs == {"url": "x"}
        assert report.outcome("a").duration_seconds is not None

    def test_invalid_transition(self):
        run = ProvisionRun(make_specs("a"))

        with pytest.raises(StateError):
            run.finish("a", StackStatus.SUCCEEDED)

    def test_cancelled_pending_never_starts(self):
        run = ProvisionRun(make_specs("a", "b"))

        assert run.request_cancel(StackParams(stacks=["b"])) == ["b"]

        assert not run.start("b")
        assert run.status("b") == StackStatus.CANCELLED

    def test_finish_after_cancel_is_cancelled(self):
        run = ProvisionRun(make_specs("a"))
        run.start("a")
        run.request_cancel(StackParams())

        recorded = run.finish("a", StackStatus.SUCCEEDED)

        assert recorded == StackStatus.CANCELLED
        assert run.report().status == RunStatus.CANCELLED

    def test_running_stack_cancelled_once(self):
        run = ProvisionRun(make_specs("a"))
        run.start("a")

        assert run.request_cancel(StackParams()) == ["a"]
        assert run.request_cancel(StackParams()) == []
        assert run.token_for("a").cancelled

    def test_failure_dominates(self):
        run = ProvisionRun(make_specs("a", "b", "c"))
        run.start("a")
        run.finish("a", StackStatus.FAILED, error="boom")
        run.skip("b", "dependency 'a' failed")
        run.request_cancel(StackParams(stacks=["c"]))

        report = run.report()
        assert report.status == RunStatus.FAILED
        assert report.failed == {"a": "boom"}
        assert "skipped: b (dependency 'a' failed)" in report.summary()

    def test_skip_only_pending(self):
        run = ProvisionRun(make_specs("a"))
        run.start("a")

        assert not run.skip("a", "late")


class TestCancelToken:
    def test_parent_cancels_children(self):
        parent = CancelToken("run")
        child = parent.child("app")

        parent.cancel("stop")

        assert child.cancelled
        with pytest.raises(OperationCancelled):
            child.raise_if_cancelled()

    def test_child_does_not_cancel_parent(self):
        parent = CancelToken("run")
        child = parent.child("app")

        child.cancel()

        assert not parent.cancelled
        assert child.wait(0)

    def test_first_reason_kept(self):
        token = CancelToken()
        token.cancel("first")
        token.cancel("second")

        assert token.reason == "first"

    def test_wait_times_out(self):
        token = CancelToken("run").child("app")

        assert token.wait(0.1) is False
