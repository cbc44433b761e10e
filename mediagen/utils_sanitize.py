#!/usr/bin/env python3
"""
utils_sanitize.py - Prompt Screening
═══════════════════════════════════════════════════════════════════════════════

Client-side filtering before a prompt is sent anywhere:
  - Whitespace normalization
  - Length enforcement
  - Blocked term / regex filtering (whole words, case-insensitive)

Providers run their own moderation; this only stops obvious requests early.

Part of MediaGen v0.1.0
"""
import re
import logging
from typing import Tuple, Dict, Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_BLOCKED_TERMS = [
    "nsfw", "explicit", "nude", "porn", "sex", "violence", "gore",
    "hate", "illegal", "drugs", "weapon",
]


def sanitize_prompt(
    text: str,
    config: Optional[Dict[str, Any]] = None,
) -> Tuple[str, bool, str]:
    """
    Normalize and screen a generation prompt.

    Args:
        text: Raw prompt text
        config: `safety` config section

    Returns:
        (sanitized_text, accepted, rejection_reason)
    """
    cfg = config or {}
    enabled = cfg.get('enabled', True)
    max_len = cfg.get('max_len', 4000)
    blocked_terms = cfg.get('blocked_terms', DEFAULT_BLOCKED_TERMS)
    blocked_regex = cfg.get('blocked_regex', [])

    sanitized = ' '.join((text or '').split())

    if len(sanitized) > max_len:
        return sanitized, False, f"too long (max {max_len} chars)"

    if not enabled or not sanitized:
        return sanitized, True, ""

    for term in blocked_terms:
        if re.search(rf"\b{re.escape(term)}\b", sanitized, re.IGNORECASE):
            return sanitized, False, f"blocked: contains '{term}'"

    for pattern in blocked_regex:
        try:
            if re.search(pattern, sanitized, re.IGNORECASE):
                return sanitized, False, "blocked: matches banned pattern"
        except re.error:
            logger.warning(f"[Sanitize] Invalid regex pattern: {pattern}")

    return sanitized, True, ""


__all__ = ['sanitize_prompt', 'DEFAULT_BLOCKED_TERMS']
