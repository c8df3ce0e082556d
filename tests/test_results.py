"""Tests for engine/results.py."""

import json

import pytest
from dhcpconverge.engine import Outcome, OutcomeStatus, ResultCollector


class TestOutcome:
    """Tests for Outcome constructors."""

    def test_skipped_blocked_by(self):
        outcome = Outcome.skipped(blocked_by="add 192.168.10.0")
        assert outcome.status is OutcomeStatus.SKIPPED
        assert outcome.detail == "blocked by add 192.168.10.0"

    def test_skipped_cause(self):
        assert Outcome.skipped(cause="cancelled").blocked_by is None

    def test_unchanged_has_no_detail(self):
        assert Outcome.unchanged().detail == ""


class TestResultCollector:
    """Tests for ResultCollector."""

    def test_write_once(self):
        """Test a second outcome for the same action is rejected."""
        collector = ResultCollector("run")
        collector.record("a", "res", Outcome.applied())
        with pytest.raises(RuntimeError):
            collector.record("a", "res", Outcome.failed("again"))

    def test_excluded_cannot_be_recorded(self):
        collector = ResultCollector("run")
        collector.exclude("a")
        assert collector.is_excluded("a")
        with pytest.raises(RuntimeError):
            collector.record("a", "res", Outcome.applied())

    def test_finalize_in_plan_order(self):
        """Test entries follow the plan order, not recording order."""
        collector = ResultCollector("run", warnings=["w"])
        collector.record("b", "res", Outcome.unchanged())
        collector.record("a", "res", Outcome.applied())
        collector.exclude("c")
        report = collector.finalize(("a", "b", "c"), "completed", 1.5)
        assert [e.action_id for e in report.entries] == ["a", "b"]
        assert report.excluded == ["c"]
        assert report.warnings == ["w"]

    def test_snapshot_is_a_copy(self):
        collector = ResultCollector("run")
        snapshot = collector.snapshot()
        collector.record("a", "res", Outcome.applied())
        assert snapshot == {}


class TestRunReport:
    """Tests for RunReport summaries."""

    @pytest.fixture
    def report(self):
        collector = ResultCollector("abc123")
        collector.record("add X", "X", Outcome.failed("boom"))
        collector.record("set X", "X", Outcome.skipped(blocked_by="add X"))
        collector.record("add Y", "Y", Outcome.applied())
        collector.record("set Y", "Y", Outcome.unchanged())
        return collector.finalize(("add X", "set X", "add Y", "set Y"), "completed", 0.25)

    def test_counts(self, report):
        assert report.counts == {"unchanged": 1, "applied": 1, "failed": 1, "skipped": 1}

    def test_success(self, report):
        """Test a failed entry makes the run unsuccessful."""
        assert not report.success
        assert report.has_skipped

    def test_by_status(self, report):
        assert [e.action_id for e in report.by_status(OutcomeStatus.SKIPPED)] == ["set X"]

    def test_to_dict_is_json_serialisable(self, report):
        """Test the report serialises with entries in plan order."""
        data = json.loads(json.dumps(report.to_dict()))
        assert data["run_id"] == "abc123"
        assert data["summary"]["failed"] == 1
        assert [a["action_id"] for a in data["actions"]] == ["add X", "set X", "add Y", "set Y"]
        assert data["actions"][1] == {
            "action_id": "set X",
            "resource_id": "X",
            "outcome": "skipped",
            "detail": "blocked by add X",
            "blocked_by": "add X",
        }
