# === NAVMAP v1 ===
# {
#   "module": "StudyShelf.ResourceAcquisition.fallback.sequencer",
#   "purpose": "Ordered, budgeted, cancellable fallback sequencer.",
#   "sections": [
#     {
#       "id": "fallbacksequencer",
#       "name": "FallbackSequencer",
#       "anchor": "class-fallbacksequencer",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""
Fallback Sequencer

Tries an ordered list of strategies until one produces a resource:
- Fixed, deterministic order; strategy i starts only after i-1 failed
- Per-strategy timeout and optional overall time budget
- Optional immediate retries of retryable errors (Tenacity, no wait)
- Cancellation token checked between strategies and raced against the
  strategy in flight
- At-most-one commit of the resolved resource through a CommitSlot
- Resources that are never committed are handed to an optional ``discard``
  hook (late results after cancellation, offers refused by the slot)
- Log and telemetry event at every transition

Design:
- Strategies never see each other's inputs; the context mapping is shared
  read-only state (clients, URLs, stores)
- Errors are classified into the ErrorKind taxonomy at the strategy boundary
- The terminal error of an exhausted run is the last failure
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Any, Callable, Dict, Generic, List, Optional, Sequence, Tuple, TypeVar

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    stop_after_delay,
    wait_none,
)

from StudyShelf.ResourceAcquisition.errors import (
    AcquisitionError,
    ErrorKind,
    StrategyTimeoutError,
    classify_exception,
    log_attempt_failure,
)

from .cancellation import CancellationToken
from .commit import CommitSlot
from .types import (
    AttemptRecord,
    Cancelled,
    Exhausted,
    Resolved,
    SequenceOutcome,
    SequencePlan,
    SequencerState,
    Strategy,
    StrategyPolicy,
)

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class _AttemptCancelled(Exception):
    """Internal signal: the token fired while a strategy was in flight."""


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, AcquisitionError) and exc.retryable


class FallbackSequencer(Generic[T]):
    """
    Runs strategies in order and reports Resolved, Exhausted or Cancelled.

    Attributes:
        strategies: Ordered strategies (never reordered at runtime)
        plan: Optional SequencePlan supplying policies, budget and halt_on
        telemetry: Optional sink with ``emit(event: dict)``
        label: Name used in logs ("pdf", "chat", ...)
        discard: Optional callback releasing a resource that was produced but
            never committed
        state: SequencerState of the latest run
        current_index: Index of the strategy being attempted, if any
        transitions: (state, index) pairs of the latest run
    """

    def __init__(
        self,
        strategies: Sequence[Strategy[T]],
        *,
        plan: Optional[SequencePlan] = None,
        telemetry: Optional[Any] = None,
        logger: Optional[logging.Logger] = None,
        label: str = "resource",
        discard: Optional[Callable[[T], None]] = None,
    ) -> None:
        if len(strategies) == 0:
            raise ValueError("FallbackSequencer requires at least one strategy")
        names = [s.name for s in strategies]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate strategy names: {names}")

        self.strategies: Tuple[Strategy[T], ...] = tuple(strategies)
        self.plan = plan
        self.telemetry = telemetry
        self.logger = logger or LOGGER
        self.label = label
        self.discard = discard

        # Per-run mutable state
        self.state = SequencerState.IDLE
        self.current_index: Optional[int] = None
        self.transitions: List[Tuple[SequencerState, Optional[int]]] = [(SequencerState.IDLE, None)]
        self._start_time: Optional[float] = None
        self._attempt_retries = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(
        self,
        context: Optional[Dict[str, Any]] = None,
        *,
        cancel_token: Optional[CancellationToken] = None,
        commit: Optional[CommitSlot[T]] = None,
    ) -> SequenceOutcome:
        """Attempt each strategy in order and return the terminal outcome.

        Args:
            context: Shared inputs handed to every strategy
            cancel_token: Optional token; when it fires no further strategy
                starts and the strategy in flight is aborted
            commit: Optional slot receiving the resolved resource

        Returns:
            Resolved, Exhausted or Cancelled
        """
        context = dict(context or {})
        if cancel_token is not None:
            context.setdefault("cancel_token", cancel_token)

        self._reset()
        attempts: List[AttemptRecord] = []
        last_error: Optional[AcquisitionError] = None

        self.logger.debug(
            f"Starting {self.label} fallback sequence: {len(self.strategies)} strategies, "
            f"budget={self._total_budget_ms() or 'unlimited'}ms"
        )

        for index, strategy in enumerate(self.strategies):
            if cancel_token is not None and cancel_token.cancelled:
                return self._cancelled(attempts, cancel_token)

            if self._is_budget_exhausted():
                self._record_budget_skips(index, attempts)
                return self._exhausted(attempts, last_error, reason="budget_exhausted")

            policy = self._effective_policy(strategy)
            self._transition(SequencerState.ATTEMPTING, index)
            self.logger.debug(
                f"[{self.label}] attempting strategy '{strategy.name}' (#{index}, "
                f"timeout={policy.timeout_ms}ms, retries_max={policy.retries_max})"
            )

            attempt_start = time.monotonic()
            self._attempt_retries = 0
            try:
                resource, retries = await self._attempt(strategy, policy, context, cancel_token)
            except _AttemptCancelled:
                attempts.append(
                    AttemptRecord(
                        strategy=strategy.name,
                        index=index,
                        outcome="cancelled",
                        elapsed_ms=self._ms_since(attempt_start),
                        reason="cancelled",
                    )
                )
                return self._cancelled(attempts, cancel_token)
            except AcquisitionError as error:
                record = self._failure_record(
                    strategy.name, index, error, attempt_start, self._attempt_retries
                )
                attempts.append(record)
                self._emit(record.to_event())
                log_attempt_failure(
                    self.logger,
                    strategy=strategy.name,
                    index=index,
                    error=error,
                    elapsed_ms=record.elapsed_ms,
                )
                if error.kind is not ErrorKind.SKIPPED or last_error is None or last_error.kind is ErrorKind.SKIPPED:
                    last_error = error
                if self.plan is not None and error.kind in self.plan.halt_on:
                    self.logger.warning(
                        f"[{self.label}] halting sequence on {error.kind.value} from '{strategy.name}'"
                    )
                    return self._exhausted(attempts, last_error, reason="halted")
                continue

            if cancel_token is not None and cancel_token.cancelled:
                # Result arrived after cancellation; never commit it.
                attempts.append(
                    AttemptRecord(
                        strategy=strategy.name,
                        index=index,
                        outcome="cancelled",
                        elapsed_ms=self._ms_since(attempt_start),
                        reason="cancelled_after_result",
                        retries=retries,
                    )
                )
                self._discard(resource, strategy.name)
                return self._cancelled(attempts, cancel_token)

            record = AttemptRecord(
                strategy=strategy.name,
                index=index,
                outcome="success",
                elapsed_ms=self._ms_since(attempt_start),
                retries=retries,
            )
            attempts.append(record)
            self._emit(record.to_event())

            committed = commit.offer(resource, strategy.name) if commit is not None else True
            if not committed:
                self._discard(resource, strategy.name)
            self._transition(SequencerState.RESOLVED, index)
            self.logger.info(
                f"[{self.label}] resolved via '{strategy.name}' after {index + 1} attempt(s) "
                f"(elapsed={self._elapsed_ms()}ms, committed={committed})"
            )
            outcome: Resolved[T] = Resolved(
                resource=resource,
                strategy=strategy.name,
                attempts=tuple(attempts),
                elapsed_ms=self._elapsed_ms(),
                committed=committed,
            )
            self._emit_terminal(outcome.state, strategy=strategy.name, attempts=len(attempts))
            return outcome

        return self._exhausted(attempts, last_error)

    def run_sync(
        self,
        context: Optional[Dict[str, Any]] = None,
        *,
        cancel_token: Optional[CancellationToken] = None,
        commit: Optional[CommitSlot[T]] = None,
    ) -> SequenceOutcome:
        """Run the sequence on a fresh event loop (for synchronous callers)."""
        return asyncio.run(self.run(context, cancel_token=cancel_token, commit=commit))

    # ------------------------------------------------------------------
    # Attempt execution
    # ------------------------------------------------------------------

    async def _attempt(
        self,
        strategy: Strategy[T],
        policy: StrategyPolicy,
        context: Dict[str, Any],
        cancel_token: Optional[CancellationToken],
    ) -> Tuple[T, int]:
        """Run one strategy (with retries), racing it against the token."""
        task = asyncio.ensure_future(self._run_with_retries(strategy, policy, context))
        if cancel_token is None:
            return await task

        waiter = asyncio.ensure_future(cancel_token.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            # Also reached when the caller's own task is cancelled.
            for pending in (waiter, task):
                if not pending.done():
                    pending.cancel()
                    with contextlib.suppress(asyncio.CancelledError, AcquisitionError):
                        await pending

        if task.cancelled():
            raise _AttemptCancelled()
        return task.result()

    async def _run_with_retries(
        self,
        strategy: Strategy[T],
        policy: StrategyPolicy,
        context: Dict[str, Any],
    ) -> Tuple[T, int]:
        # timeout_ms bounds the strategy as a whole, retries included.
        deadline = time.monotonic() + policy.timeout_s
        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.retries_max + 1) | stop_after_delay(policy.timeout_s),
            retry=retry_if_exception(_is_retryable),
            wait=wait_none(),
            reraise=True,
        )
        calls = 0

        async def _call() -> T:
            nonlocal calls
            calls += 1
            if calls > 1:
                self.logger.debug(f"[{self.label}] retrying '{strategy.name}' (attempt {calls})")
            return await self._call_once(strategy, policy, context, deadline)

        try:
            resource = await retrying(_call)
        finally:
            self._attempt_retries = max(0, calls - 1)
        return resource, calls - 1

    async def _call_once(
        self,
        strategy: Strategy[T],
        policy: StrategyPolicy,
        context: Dict[str, Any],
        deadline: float,
    ) -> T:
        timeout_s = max(deadline - time.monotonic(), 0.001)
        remaining_ms = self._remaining_budget_ms()
        if remaining_ms is not None:
            timeout_s = min(timeout_s, max(remaining_ms, 1) / 1000.0)

        try:
            return await asyncio.wait_for(strategy.run(policy, context), timeout=timeout_s)
        except asyncio.TimeoutError as exc:
            raise StrategyTimeoutError(
                f"Strategy '{strategy.name}' exceeded {int(timeout_s * 1000)}ms",
                url=context.get("url"),
                timeout_ms=int(timeout_s * 1000),
            ) from exc
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            raise classify_exception(exc, url=context.get("url")) from exc

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _effective_policy(self, strategy: Strategy[T]) -> StrategyPolicy:
        if self.plan is not None and strategy.name in self.plan.policies:
            return self.plan.policies[strategy.name]
        if strategy.policy is not None:
            return strategy.policy
        if self.plan is not None:
            return self.plan.get_policy(strategy.name)
        return StrategyPolicy(name=strategy.name, timeout_ms=10_000)

    def _failure_record(
        self,
        name: str,
        index: int,
        error: AcquisitionError,
        attempt_start: float,
        retries: int,
    ) -> AttemptRecord:
        if error.kind is ErrorKind.TIMEOUT:
            outcome = "timeout"
        elif error.kind is ErrorKind.SKIPPED:
            outcome = "skipped"
        else:
            outcome = "failed"
        return AttemptRecord(
            strategy=name,
            index=index,
            outcome=outcome,
            elapsed_ms=self._ms_since(attempt_start),
            reason=error.reason,
            error_kind=error.kind,
            retries=retries,
        )

    def _record_budget_skips(self, start_index: int, attempts: List[AttemptRecord]) -> None:
        for index in range(start_index, len(self.strategies)):
            attempts.append(
                AttemptRecord(
                    strategy=self.strategies[index].name,
                    index=index,
                    outcome="skipped",
                    elapsed_ms=0,
                    reason="budget_exhausted",
                    error_kind=ErrorKind.SKIPPED,
                )
            )

    def _exhausted(
        self,
        attempts: List[AttemptRecord],
        last_error: Optional[AcquisitionError],
        *,
        reason: str = "all_strategies_failed",
    ) -> Exhausted:
        self._transition(SequencerState.EXHAUSTED, self.current_index)
        kind = last_error.kind.value if last_error else "none"
        self.logger.warning(
            f"[{self.label}] all strategies exhausted ({reason}, attempts={len(attempts)}, "
            f"last_error={kind})"
        )
        outcome = Exhausted(
            last_error=last_error,
            attempts=tuple(attempts),
            elapsed_ms=self._elapsed_ms(),
            reason=reason,
        )
        self._emit_terminal(outcome.state, reason=reason, error_kind=kind, attempts=len(attempts))
        return outcome

    def _cancelled(
        self, attempts: List[AttemptRecord], cancel_token: Optional[CancellationToken]
    ) -> Cancelled:
        reason = cancel_token.reason if cancel_token is not None else None
        self._transition(SequencerState.CANCELLED, self.current_index)
        self.logger.info(f"[{self.label}] sequence cancelled ({reason}, attempts={len(attempts)})")
        outcome = Cancelled(attempts=tuple(attempts), elapsed_ms=self._elapsed_ms(), reason=reason)
        self._emit_terminal(outcome.state, reason=reason, attempts=len(attempts))
        return outcome

    def _reset(self) -> None:
        self.state = SequencerState.IDLE
        self.current_index = None
        self.transitions = [(SequencerState.IDLE, None)]
        self._start_time = time.monotonic()

    def _transition(self, state: SequencerState, index: Optional[int]) -> None:
        self.state = state
        self.current_index = index
        self.transitions.append((state, index))

    def _discard(self, resource: T, strategy_name: str) -> None:
        if self.discard is None:
            return
        self.logger.debug(f"[{self.label}] discarding uncommitted resource from '{strategy_name}'")
        try:
            self.discard(resource)
        except Exception as e:  # pylint: disable=broad-except
            self.logger.warning(f"Discarding resource from '{strategy_name}' failed: {e}")

    def _emit(self, event: Dict[str, Any]) -> None:
        if not self.telemetry:
            return
        try:
            payload = {"event_type": "fallback_attempt", "label": self.label}
            payload.update(event)
            self.telemetry.emit(payload)
        except Exception as e:  # pylint: disable=broad-except
            self.logger.warning(f"Telemetry emission failed: {e}")

    def _emit_terminal(self, state: SequencerState, **fields: Any) -> None:
        if not self.telemetry:
            return
        try:
            payload = {
                "event_type": "fallback_outcome",
                "label": self.label,
                "state": state.value,
                "elapsed_ms": self._elapsed_ms(),
            }
            payload.update(fields)
            self.telemetry.emit(payload)
        except Exception as e:  # pylint: disable=broad-except
            self.logger.warning(f"Telemetry emission failed: {e}")

    def _total_budget_ms(self) -> Optional[int]:
        return self.plan.total_timeout_ms if self.plan is not None else None

    def _is_budget_exhausted(self) -> bool:
        remaining = self._remaining_budget_ms()
        return remaining is not None and remaining <= 0

    def _remaining_budget_ms(self) -> Optional[int]:
        budget = self._total_budget_ms()
        if budget is None:
            return None
        return budget - self._elapsed_ms()

    def _elapsed_ms(self) -> int:
        if self._start_time is None:
            return 0
        return self._ms_since(self._start_time)

    @staticmethod
    def _ms_since(start: float) -> int:
        return max(0, int((time.monotonic() - start) * 1000))


__all__ = ["FallbackSequencer"]
