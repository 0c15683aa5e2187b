"""Scrub credentials out of text before it leaves the engine."""

from __future__ import annotations

import re
from collections.abc import Iterable

PLACEHOLDER = "[API_KEY_HIDDEN]"

_BEARER = re.compile(r"Bearer\s+sk-[A-Za-z0-9_-]+")
_SK_KEY = re.compile(r"sk-[A-Za-z0-9]{20,}")


def redact(text: str, secrets: Iterable[str] = ()) -> str:
    """Replace known secrets and anything shaped like an API key."""
    out = text
    for secret in secrets:
        if secret:
            out = out.replace(secret, PLACEHOLDER)
    out = _BEARER.sub(f"Bearer {PLACEHOLDER}", out)
    return _SK_KEY.sub(PLACEHOLDER, out)
