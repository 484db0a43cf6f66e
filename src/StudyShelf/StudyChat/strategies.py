"""Chat reply strategies, tried in order by the fallback sequencer.

1. ``session``    - full accumulated history plus the new turn
2. ``transcript`` - the last N turns flattened into one single-shot prompt
                    (survives histories the API rejects, e.g. broken role
                    alternation or oversize context)
3. ``apology``    - static message; never fails

Context keys:
  history  Prior ChatTurns for the user
  turn     The new user ChatTurn
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Sequence

from StudyShelf.config.models import ChatConfig
from StudyShelf.ResourceAcquisition.fallback import SequencePlan, Strategy, StrategyPolicy
from StudyShelf.schemas import ChatTurn, MessagePart

from .backend import Content, GenerativeBackend

ROLE_LABELS = {"user": "User", "model": "Assistant"}


def to_content(turn: ChatTurn) -> Content:
    return turn.model_dump(by_alias=True, exclude_none=True)


def session_contents(history: Sequence[ChatTurn], turn: ChatTurn) -> List[Content]:
    return [to_content(t) for t in history] + [to_content(turn)]


def transcript_prompt(history: Sequence[ChatTurn], turn: ChatTurn, max_turns: int) -> ChatTurn:
    """Flatten the tail of ``history`` and ``turn`` into one user turn.

    Inline images of the new turn are kept; images from earlier turns are
    dropped.
    """
    lines = ["Continue this conversation. Reply to the final user message only.", ""]
    for past in list(history)[-max_turns:]:
        text = past.plain_text
        if text:
            lines.append(f"{ROLE_LABELS[past.role]}: {text}")
    lines.append(f"User: {turn.plain_text}")

    parts = [MessagePart(text="\n".join(lines))]
    parts.extend(part for part in turn.parts if part.inline_data is not None)
    return ChatTurn(role="user", parts=parts)


def build_chat_strategies(
    backend: GenerativeBackend,
    config: ChatConfig,
    plan: Optional[SequencePlan] = None,
) -> List[Strategy[str]]:
    """Return the chat strategies in plan order (default: session, transcript, apology)."""

    async def session(policy: StrategyPolicy, context: Dict[str, Any]) -> str:
        return await backend.generate(session_contents(context.get("history") or [], context["turn"]))

    async def transcript(policy: StrategyPolicy, context: Dict[str, Any]) -> str:
        prompt = transcript_prompt(context.get("history") or [], context["turn"], config.transcript_turns)
        return await backend.generate([to_content(prompt)])

    async def apology(policy: StrategyPolicy, context: Dict[str, Any]) -> str:
        return config.apology_message

    available: Dict[str, Callable[..., Any]] = {
        "session": session,
        "transcript": transcript,
        "apology": apology,
    }
    order = plan.strategy_order if plan is not None else tuple(available)
    strategies: List[Strategy[str]] = []
    for name in order:
        if name not in available:
            raise ValueError(f"Unknown chat strategy '{name}'")
        policy = plan.get_policy(name) if plan is not None else None
        strategies.append(Strategy(name=name, run=available[name], policy=policy))
    return strategies


__all__ = ["build_chat_strategies", "session_contents", "to_content", "transcript_prompt"]
