from __future__ import annotations

import unicodedata


def normalize_text(value: str) -> str:
    """Return UTF-8 safe text by collapsing surrogate-escaped bytes.

    Retrieved file names may contain undecodable bytes represented as lone
    surrogates, which the CSV report and terminal rendering reject. Canonicalize
    to NFC as well so component names retrieved on macOS and Linux compare equal.
    """
    safe = value.encode("utf-8", "surrogateescape").decode("utf-8", "replace")
    return unicodedata.normalize("NFC", safe)
