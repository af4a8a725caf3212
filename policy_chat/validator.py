"""Structural validation of inbound chat payloads.

Checks run in a fixed order and stop at the first failure, so a caller is
always told about exactly one violated constraint.
"""

from dataclasses import dataclass
from typing import Any, Optional

from policy_chat.config import LimitsConfig
from policy_chat.models import ChatMode, UserRole

_MODES = [m.value for m in ChatMode]
_ROLES = [r.value for r in UserRole]
_HISTORY_ROLES = ("user", "assistant")


@dataclass(frozen=True)
class ValidationError:
    """A rejected payload: the offending field and a caller-facing message."""

    field: str
    message: str
    status: int = 400


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_request(payload: Any, limits: LimitsConfig) -> Optional[ValidationError]:
    """Validate a decoded JSON payload against the gateway limits.

    Args:
        payload: The decoded request body.
        limits: Caller-facing limits from the gateway config.

    Returns:
        None if the payload is acceptable, otherwise the first ValidationError.
    """
    if not isinstance(payload, dict):
        return ValidationError("body", "Request body must be a JSON object")

    message = payload.get("message")
    if not isinstance(message, str) or not message.strip():
        return ValidationError("message", 'Missing or invalid "message" field')
    if len(message) > limits.max_message_length:
        return ValidationError(
            "message",
            "Message exceeds {} characters".format(limits.max_message_length),
        )

    if payload.get("mode") not in _MODES:
        return ValidationError(
            "mode", 'Invalid "mode". Must be: policy-qa, author-assist, or general-help'
        )

    if payload.get("userRole") not in _ROLES:
        return ValidationError(
            "userRole", 'Invalid "userRole". Must be: User, Author, Manager, or Admin'
        )

    history = payload.get("conversationHistory")
    if history is not None:
        if not isinstance(history, list):
            return ValidationError(
                "conversationHistory", '"conversationHistory" must be an array'
            )
        if len(history) > limits.max_history_messages:
            return ValidationError(
                "conversationHistory",
                "Conversation history exceeds {} messages".format(
                    limits.max_history_messages
                ),
            )
        for index, item in enumerate(history):
            if (
                not isinstance(item, dict)
                or item.get("role") not in _HISTORY_ROLES
                or not isinstance(item.get("content"), str)
            ):
                return ValidationError(
                    "conversationHistory[{}]".format(index),
                    "Conversation history entry {} must have a role of user or "
                    "assistant and string content".format(index),
                )

    context = payload.get("policyContext")
    if context is not None:
        if not isinstance(context, dict):
            return ValidationError("policyContext", '"policyContext" must be an object')
        policies = context.get("policies")
        if policies is not None:
            if not isinstance(policies, list):
                return ValidationError(
                    "policyContext.policies", '"policyContext.policies" must be an array'
                )
            if len(policies) > limits.max_policy_context:
                return ValidationError(
                    "policyContext.policies",
                    "Policy context exceeds {} policies".format(
                        limits.max_policy_context
                    ),
                )

    max_tokens = payload.get("maxTokens")
    if max_tokens is not None and (not _is_int(max_tokens) or max_tokens < 1):
        return ValidationError("maxTokens", '"maxTokens" must be a positive integer')

    return None
