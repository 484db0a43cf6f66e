"""
Fallback Types Tests

Validation rules of the frozen dataclasses shared by the sequencer,
the adapters and their callers.
"""

import pytest

from StudyShelf.ResourceAcquisition.errors import ErrorKind
from StudyShelf.ResourceAcquisition.fallback import (
    AttemptRecord,
    CancellationToken,
    Cancelled,
    Exhausted,
    Resolved,
    SequencePlan,
    SequencerState,
    Strategy,
    StrategyPolicy,
)


async def _noop(policy, context):
    return None


class TestStrategyPolicy:
    """Test StrategyPolicy dataclass."""

    def test_valid_policy(self):
        """Test creating a policy and reading its timeout in seconds."""
        policy = StrategyPolicy(name="proxy", timeout_ms=8000, retries_max=1)
        assert policy.timeout_s == 8.0
        assert policy.retries_max == 1

    def test_invalid_timeout(self):
        """Test that a non-positive timeout is rejected."""
        with pytest.raises(ValueError, match="timeout_ms must be positive"):
            StrategyPolicy(name="direct", timeout_ms=0)

    def test_invalid_retries(self):
        """Test that negative retries are rejected."""
        with pytest.raises(ValueError, match="retries_max must be non-negative"):
            StrategyPolicy(name="direct", timeout_ms=100, retries_max=-1)

    def test_policy_is_frozen(self):
        """Test that policies are immutable."""
        policy = StrategyPolicy(name="direct", timeout_ms=100)
        with pytest.raises(AttributeError):
            policy.timeout_ms = 200


class TestStrategy:
    """Test Strategy dataclass."""

    def test_policy_name_must_match(self):
        """Test that a strategy rejects another strategy's policy."""
        with pytest.raises(ValueError, match="does not match"):
            Strategy(name="blob", run=_noop, policy=StrategyPolicy(name="proxy", timeout_ms=100))

    def test_empty_name(self):
        """Test that a strategy needs a name."""
        with pytest.raises(ValueError):
            Strategy(name="", run=_noop)


class TestAttemptRecord:
    """Test AttemptRecord dataclass."""

    def test_success_record(self):
        """Test a successful record and its telemetry event."""
        record = AttemptRecord(strategy="direct", index=0, outcome="success", elapsed_ms=12)
        assert record.is_success
        assert record.to_event() == {
            "strategy": "direct",
            "index": 0,
            "outcome": "success",
            "elapsed_ms": 12,
            "reason": "ok",
            "error_kind": None,
            "retries": 0,
        }

    def test_failure_record_event(self):
        """Test that error kinds are serialised by value."""
        record = AttemptRecord(
            strategy="blob",
            index=1,
            outcome="failed",
            elapsed_ms=5,
            reason="http_status_404",
            error_kind=ErrorKind.HTTP_STATUS,
        )
        assert not record.is_success
        assert record.to_event()["error_kind"] == "http_status"

    def test_success_with_error_kind_rejected(self):
        """Test that a success cannot carry an error kind."""
        with pytest.raises(ValueError):
            AttemptRecord(
                strategy="direct", index=0, outcome="success", elapsed_ms=1, error_kind=ErrorKind.NETWORK
            )

    def test_negative_elapsed_rejected(self):
        """Test that elapsed time cannot be negative."""
        with pytest.raises(ValueError, match="elapsed_ms"):
            AttemptRecord(strategy="direct", index=0, outcome="failed", elapsed_ms=-1)


class TestOutcomes:
    """Test the terminal outcome types."""

    def test_states(self):
        """Test that each outcome reports its terminal state."""
        assert Resolved(resource="r", strategy="direct").state is SequencerState.RESOLVED
        assert Exhausted(last_error=None).state is SequencerState.EXHAUSTED
        assert Cancelled().state is SequencerState.CANCELLED
        assert Resolved(resource="r", strategy="direct").is_resolved
        assert not Exhausted(last_error=None).is_resolved

    def test_terminal_states(self):
        """Test which states end a run."""
        assert SequencerState.RESOLVED.is_terminal
        assert not SequencerState.ATTEMPTING.is_terminal
        assert not SequencerState.IDLE.is_terminal


class TestSequencePlan:
    """Test SequencePlan dataclass."""

    def test_default_policy(self):
        """Test that strategies without a policy get the default timeout."""
        plan = SequencePlan(strategy_order=("direct", "proxy"), default_timeout_ms=2500)
        assert plan.get_policy("proxy").timeout_ms == 2500

    def test_empty_order(self):
        """Test that an empty order is rejected."""
        with pytest.raises(ValueError, match="cannot be empty"):
            SequencePlan(strategy_order=())

    def test_duplicate_order(self):
        """Test that duplicates are rejected."""
        with pytest.raises(ValueError, match="duplicates"):
            SequencePlan(strategy_order=("direct", "direct"))

    def test_stray_policy(self):
        """Test that policies must name ordered strategies."""
        with pytest.raises(ValueError, match="not in strategy_order"):
            SequencePlan(
                strategy_order=("direct",),
                policies={"proxy": StrategyPolicy(name="proxy", timeout_ms=100)},
            )


class TestCancellationToken:
    """Test CancellationToken."""

    def test_first_reason_wins(self):
        """Test that repeated cancels keep the first reason."""
        token = CancellationToken()
        assert not token.cancelled
        token.cancel("closed")
        token.cancel("again")
        assert token.cancelled
        assert token.reason == "closed"
