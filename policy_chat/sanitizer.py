"""Free-text sanitization applied to caller-authored chat content.

Strips markup and defangs prompt-injection trigger phrases by bracketing them,
so the caller's wording is kept for auditing but can no longer pass for a
system or assistant turn.
"""

import re

_SCRIPT_BLOCK = re.compile(r"<script[^>]*>[\s\S]*?</script>", re.IGNORECASE)
_HTML_TAG = re.compile(r"<[^>]+>")

# An already bracketed (or half-bracketed) phrase is matched together with its
# brackets and rewritten to the canonical "[phrase]" form.
_INJECTION_PHRASE = re.compile(
    r"\[?\b(system|assistant|ignore previous|disregard|new instructions?)\b\]?",
    re.IGNORECASE,
)


def strip_markup(text: str) -> str:
    """Remove script blocks (with their content), then any remaining tags."""
    text = _SCRIPT_BLOCK.sub("", text)
    return _HTML_TAG.sub("", text)


def neutralize_injection(text: str) -> str:
    """Wrap prompt-injection trigger phrases in literal brackets."""
    return _INJECTION_PHRASE.sub(lambda m: "[{}]".format(m.group(1)), text)


def sanitize(text: str, max_length: int) -> str:
    """Sanitize caller-supplied text for inclusion in a prompt.

    Idempotent: ``sanitize(sanitize(x, n), n) == sanitize(x, n)``.

    Args:
        text: Raw caller text (current message or a history entry).
        max_length: Maximum number of characters to keep.

    Returns:
        The sanitized, truncated and trimmed text.
    """
    text = strip_markup(text)
    text = neutralize_injection(text)
    return text[:max_length].strip()
