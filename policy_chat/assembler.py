"""Prompt assembly: turn a validated chat request into upstream messages.

Message order is fixed: the mode's instructions, then (for policy-grounded
modes) the retrieved policy context, then sanitized history, then the
sanitized current message. Instructions always precede caller data.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

from policy_chat.config import LimitsConfig
from policy_chat.models import (
    ChatMode,
    ChatRequest,
    HistoryMessage,
    PolicyContextItem,
    PromptMessage,
)
from policy_chat.prompts import build_policy_context_message, get_system_prompt
from policy_chat.sanitizer import sanitize


@dataclass(frozen=True)
class AssembledPrompt:
    """Messages and token ceiling for a single upstream call."""

    messages: List[PromptMessage]
    max_tokens: int


def resolve_token_ceiling(requested: Optional[int], limits: LimitsConfig) -> int:
    """Caller may lower the generation budget but never exceed the ceiling."""
    return min(requested or limits.max_tokens_default, limits.max_tokens_ceiling)


def window_history(
    history: Sequence[HistoryMessage], max_messages: int
) -> List[HistoryMessage]:
    """Keep the newest ``max_messages`` entries, oldest first."""
    if max_messages <= 0:
        return []
    return list(history)[-max_messages:]


def assemble_prompt(
    mode: ChatMode,
    policies: Optional[Sequence[PolicyContextItem]],
    history: Sequence[HistoryMessage],
    message: str,
    max_tokens: Optional[int],
    limits: LimitsConfig,
    app_base_url: str,
) -> AssembledPrompt:
    """Build the ordered upstream message list and token ceiling.

    Args:
        mode: Chat persona; selects the base system prompt.
        policies: Retrieved policy summaries, or None when the caller sent no
            policy context. An empty list (or None in policy-qa mode) yields
            an explicit "no matching policies" instruction.
        history: Prior turns, oldest first.
        message: The caller's current message.
        max_tokens: Caller-requested generation budget, if any.
        limits: Gateway limits.
        app_base_url: Base URL of the policy application pages.
    """
    messages = [
        PromptMessage(role="system", content=get_system_prompt(mode, app_base_url))
    ]

    # Q&A answers only from context, so a missing context means "nothing found".
    if mode == ChatMode.POLICY_QA and policies is None:
        policies = []

    if mode != ChatMode.GENERAL_HELP and policies is not None:
        messages.append(
            PromptMessage(
                role="system",
                content=build_policy_context_message(
                    policies, limits.max_context_chars
                ),
            )
        )

    for turn in window_history(history, limits.max_history_messages):
        messages.append(
            PromptMessage(
                role=turn.role,
                content=sanitize(turn.content, limits.max_message_length),
            )
        )

    messages.append(
        PromptMessage(
            role="user", content=sanitize(message, limits.max_message_length)
        )
    )

    return AssembledPrompt(
        messages=messages, max_tokens=resolve_token_ceiling(max_tokens, limits)
    )


def assemble_for_request(
    request: ChatRequest, limits: LimitsConfig, app_base_url: str
) -> AssembledPrompt:
    """Assemble the prompt for a validated ChatRequest."""
    policies = None
    if request.policy_context is not None:
        policies = request.policy_context.policies

    return assemble_prompt(
        mode=request.mode,
        policies=policies,
        history=request.conversation_history,
        message=request.message,
        max_tokens=request.max_tokens,
        limits=limits,
        app_base_url=app_base_url,
    )
