# api/services/tokenizer.py
"""Whitespace tokenizer producing per-message token counts."""

from __future__ import annotations

import re
from collections import Counter
from typing import Dict, Optional

__all__ = ["tokenize"]

# Runs of non-whitespace. The ASCII information separators \x1c-\x1f count as
# whitespace for ``str.split`` but are not Unicode White_Space, so they stay
# inside tokens.
_TOKEN_PATTERN = re.compile(r"(?:[^\s]|[\x1c-\x1f])+")


def tokenize(payload: Optional[str]) -> Dict[str, int]:
    """Count whitespace-delimited tokens in a single message payload.

    Tokens are exact substrings: no case folding, stemming or punctuation
    stripping. ``None`` and blank payloads yield an empty mapping.
    """

    if not payload:
        return {}
    return dict(Counter(_TOKEN_PATTERN.findall(payload)))
