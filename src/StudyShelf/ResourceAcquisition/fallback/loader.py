"""Plan builder for fallback sequences.

Turns a validated :class:`~StudyShelf.config.models.PlanConfig` into the
frozen :class:`SequencePlan` consumed by the sequencer, applying the named
tuning profiles on the way.

Profiles:
  fast      Short per-strategy timeouts, no retries, 20s overall cap
  reliable  Long per-strategy timeouts, one retry each, 180s overall cap

Example:
    ```python
    from StudyShelf.config import load_config
    from StudyShelf.ResourceAcquisition.fallback.loader import build_sequence_plan

    config = load_config("studyshelf.yaml")
    plan = build_sequence_plan(config.fallback.documents)
    ```
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from StudyShelf.config.loader import ConfigurationError
from StudyShelf.config.models import PlanConfig
from StudyShelf.ResourceAcquisition.errors import ErrorKind

from .types import SequencePlan, StrategyPolicy

logger = logging.getLogger(__name__)


def _get_fast_profile() -> Dict[str, Any]:
    """Return FAST tuning profile."""
    return {
        "total_timeout_ms": 20_000,
        "timeout_cap_ms": 5_000,
        "retries_max": 0,
    }


def _get_reliable_profile() -> Dict[str, Any]:
    """Return HIGH RELIABILITY tuning profile."""
    return {
        "total_timeout_ms": 180_000,
        "timeout_floor_ms": 15_000,
        "retries_max": 1,
    }


PROFILES = {
    "fast": _get_fast_profile,
    "reliable": _get_reliable_profile,
}


def _apply_profile(name: str, policy: StrategyPolicy) -> StrategyPolicy:
    profile = PROFILES[name]()
    timeout_ms = policy.timeout_ms
    if "timeout_cap_ms" in profile:
        timeout_ms = min(timeout_ms, profile["timeout_cap_ms"])
    if "timeout_floor_ms" in profile:
        timeout_ms = max(timeout_ms, profile["timeout_floor_ms"])
    return StrategyPolicy(
        name=policy.name,
        timeout_ms=timeout_ms,
        retries_max=profile.get("retries_max", policy.retries_max),
    )


def build_sequence_plan(config: PlanConfig, profile: Optional[str] = None) -> SequencePlan:
    """Build a SequencePlan from a plan configuration section.

    Args:
        config: Validated plan configuration
        profile: Tuning profile overriding ``config.profile`` ("fast" / "reliable")

    Returns:
        SequencePlan ready for use by the sequencer

    Raises:
        ConfigurationError: If the profile is unknown or the plan is invalid
    """
    profile = profile or config.profile
    if profile is not None and profile not in PROFILES:
        raise ConfigurationError(f"Unknown tuning profile: {profile!r}")

    policies: Dict[str, StrategyPolicy] = {}
    for name in config.strategy_order:
        policy_config = config.policies.get(name)
        if policy_config is not None:
            policy = StrategyPolicy(
                name=name,
                timeout_ms=policy_config.timeout_ms,
                retries_max=policy_config.retries_max,
            )
        else:
            policy = StrategyPolicy(name=name, timeout_ms=config.default_timeout_ms)
        if profile is not None:
            policy = _apply_profile(profile, policy)
        policies[name] = policy

    total_timeout_ms = config.total_timeout_ms
    if profile is not None:
        total_timeout_ms = PROFILES[profile]()["total_timeout_ms"]

    try:
        plan = SequencePlan(
            strategy_order=tuple(config.strategy_order),
            policies=policies,
            default_timeout_ms=config.default_timeout_ms,
            total_timeout_ms=total_timeout_ms,
            halt_on=frozenset(ErrorKind.from_wire(kind) for kind in config.halt_on),
        )
    except ValueError as e:
        raise ConfigurationError(f"Invalid fallback plan: {e}") from e

    logger.debug(
        f"Built SequencePlan: {len(plan.strategy_order)} strategies, "
        f"profile={profile or 'default'}, budget={plan.total_timeout_ms}ms"
    )
    return plan


__all__ = ["PROFILES", "build_sequence_plan"]
