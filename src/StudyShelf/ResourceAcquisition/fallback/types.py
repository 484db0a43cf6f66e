"""Core types for the fallback sequencer.

This module defines the dataclasses shared by the sequencer, the strategy
adapters and their callers:

- SequencerState: Lifecycle of one sequencer run
- StrategyPolicy: Time and retry allowance for a single strategy
- Strategy: A named async operation producing a resource
- AttemptRecord: Trace entry for one strategy attempt
- Resolved / Exhausted / Cancelled: Terminal outcomes of a run
- SequencePlan: Ordered strategy names with policies and budgets

All types are frozen dataclasses for immutability.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    FrozenSet,
    Generic,
    Literal,
    Optional,
    Tuple,
    TypeVar,
    Union,
)

from StudyShelf.ResourceAcquisition.errors import AcquisitionError, ErrorKind

T = TypeVar("T")

# ============================================================================
# States and outcomes
# ============================================================================


class SequencerState(Enum):
    """Lifecycle of a sequencer run: Idle → Attempting(i) → terminal."""

    IDLE = "idle"
    ATTEMPTING = "attempting"
    RESOLVED = "resolved"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SequencerState.RESOLVED, SequencerState.EXHAUSTED, SequencerState.CANCELLED)


AttemptOutcome = Literal[
    "success",  # Strategy produced a resource
    "failed",  # Strategy raised a typed error
    "timeout",  # Strategy exceeded its allowance
    "skipped",  # Strategy does not apply, or budget left no room for it
    "cancelled",  # Token fired while the strategy was in flight
]

# ============================================================================
# StrategyPolicy
# ============================================================================


@dataclass(frozen=True)
class StrategyPolicy:
    """Time and retry allowance for a single strategy.

    Attributes:
        name: Strategy identifier (e.g., "direct", "proxy")
        timeout_ms: Upper bound for the strategy, immediate retries included
        retries_max: Immediate re-attempts for retryable errors (no backoff)

    Example:
        ```python
        policy = StrategyPolicy(name="proxy", timeout_ms=8000, retries_max=1)
        ```
    """

    name: str = field()
    timeout_ms: int = field()
    retries_max: int = field(default=0)

    def __post_init__(self) -> None:
        """Validate policy parameters."""
        if not self.name:
            raise ValueError("name must be non-empty")
        if self.timeout_ms <= 0:
            msg = f"timeout_ms must be positive, got {self.timeout_ms}"
            raise ValueError(msg)
        if self.retries_max < 0:
            msg = f"retries_max must be non-negative, got {self.retries_max}"
            raise ValueError(msg)

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000.0


# ============================================================================
# Strategy
# ============================================================================

StrategyFn = Callable[[StrategyPolicy, Dict[str, Any]], Awaitable[T]]


@dataclass(frozen=True)
class Strategy(Generic[T]):
    """A named way of obtaining a resource.

    ``run`` receives the effective :class:`StrategyPolicy` and the shared
    context mapping. It returns the resource or raises an
    :class:`~StudyShelf.ResourceAcquisition.errors.AcquisitionError`; other
    exceptions are classified by the sequencer.
    """

    name: str
    run: StrategyFn
    policy: Optional[StrategyPolicy] = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Strategy.name cannot be empty")
        if self.policy is not None and self.policy.name != self.name:
            msg = f"policy name {self.policy.name!r} does not match strategy {self.name!r}"
            raise ValueError(msg)


# ============================================================================
# AttemptRecord
# ============================================================================


@dataclass(frozen=True)
class AttemptRecord:
    """Trace entry for one strategy attempt.

    Attributes:
        strategy: Strategy name
        index: Position of the strategy in the sequence (0-based)
        outcome: AttemptOutcome
        elapsed_ms: Wall-clock time of the attempt, retries included
        reason: Short reason code ("ok", "http_status_404", "budget_exhausted")
        error_kind: ErrorKind of the failure, if any
        retries: Immediate re-attempts performed before the outcome
    """

    strategy: str
    index: int
    outcome: AttemptOutcome
    elapsed_ms: int
    reason: str = "ok"
    error_kind: Optional[ErrorKind] = None
    retries: int = 0

    def __post_init__(self) -> None:
        if self.elapsed_ms < 0:
            msg = f"elapsed_ms must be non-negative, got {self.elapsed_ms}"
            raise ValueError(msg)
        if self.outcome == "success" and self.error_kind is not None:
            raise ValueError("outcome='success' cannot carry an error_kind")

    @property
    def is_success(self) -> bool:
        return self.outcome == "success"

    def to_event(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy,
            "index": self.index,
            "outcome": self.outcome,
            "elapsed_ms": self.elapsed_ms,
            "reason": self.reason,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "retries": self.retries,
        }


# ============================================================================
# Terminal outcomes
# ============================================================================


@dataclass(frozen=True)
class Resolved(Generic[T]):
    """A strategy produced the resource.

    ``committed`` is False when another sequence sharing the same
    :class:`~StudyShelf.ResourceAcquisition.fallback.commit.CommitSlot`
    committed first; the sequencer's ``discard`` hook has then already
    released ``resource``.
    """

    resource: T
    strategy: str
    attempts: Tuple[AttemptRecord, ...] = ()
    elapsed_ms: int = 0
    committed: bool = True

    state = SequencerState.RESOLVED

    @property
    def is_resolved(self) -> bool:
        return True


@dataclass(frozen=True)
class Exhausted:
    """Every strategy failed (or the sequence halted / ran out of budget).

    ``last_error`` is the most recent real failure; skips only fill it when
    nothing else failed.
    """

    last_error: Optional[AcquisitionError]
    attempts: Tuple[AttemptRecord, ...] = ()
    elapsed_ms: int = 0
    reason: str = "all_strategies_failed"

    state = SequencerState.EXHAUSTED

    @property
    def is_resolved(self) -> bool:
        return False


@dataclass(frozen=True)
class Cancelled:
    """The cancellation token fired before a strategy could succeed."""

    attempts: Tuple[AttemptRecord, ...] = ()
    elapsed_ms: int = 0
    reason: Optional[str] = None

    state = SequencerState.CANCELLED

    @property
    def is_resolved(self) -> bool:
        return False


SequenceOutcome = Union[Resolved[T], Exhausted, Cancelled]

# ============================================================================
# SequencePlan
# ============================================================================


@dataclass(frozen=True)
class SequencePlan:
    """Ordered strategy names with their policies and budgets.

    Attributes:
        strategy_order: Fixed execution order
        policies: Mapping of strategy name to StrategyPolicy
        default_timeout_ms: Timeout for strategies without a policy
        total_timeout_ms: Optional hard cap for the whole sequence
        halt_on: Error kinds that stop the sequence instead of advancing

    Example:
        ```python
        plan = SequencePlan(
            strategy_order=("direct", "blob", "proxy"),
            policies={"proxy": StrategyPolicy("proxy", timeout_ms=8000)},
            default_timeout_ms=5000,
            total_timeout_ms=20000,
        )
        ```
    """

    strategy_order: Tuple[str, ...]
    policies: Dict[str, StrategyPolicy] = field(default_factory=dict)
    default_timeout_ms: int = 10_000
    total_timeout_ms: Optional[int] = None
    halt_on: FrozenSet[ErrorKind] = frozenset()

    def __post_init__(self) -> None:
        """Validate plan integrity."""
        if len(self.strategy_order) == 0:
            raise ValueError("strategy_order cannot be empty")
        if len(set(self.strategy_order)) != len(self.strategy_order):
            msg = f"strategy_order contains duplicates: {list(self.strategy_order)}"
            raise ValueError(msg)
        if self.default_timeout_ms <= 0:
            raise ValueError("default_timeout_ms must be positive")
        if self.total_timeout_ms is not None and self.total_timeout_ms <= 0:
            raise ValueError("total_timeout_ms must be positive")
        unknown = set(self.policies) - set(self.strategy_order)
        if unknown:
            msg = f"policies reference strategies not in strategy_order: {sorted(unknown)}"
            raise ValueError(msg)

    def get_policy(self, name: str) -> StrategyPolicy:
        """Return the policy for ``name`` (default timeout when unset)."""
        policy = self.policies.get(name)
        if policy is not None:
            return policy
        return StrategyPolicy(name=name, timeout_ms=self.default_timeout_ms)
