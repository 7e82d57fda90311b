# decoding/game_codes.py
import re
from typing import List, Optional

_CODE_RE = re.compile(r"^[A-Z0-9-]{3,10}$")
_URL_CODE_RE = re.compile(r"/game/([^/?#]+)")

_FALLBACK_CHARS = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def normalize_game_code(code: Optional[str]) -> Optional[str]:
    """Uppercased, trimmed game code, or None when it is not a valid one."""
    if not isinstance(code, str):
        return None
    cleaned = code.strip().upper()
    return cleaned if _CODE_RE.match(cleaned) else None


def is_valid_game_code(code: Optional[str]) -> bool:
    return normalize_game_code(code) is not None


def code_variations(code: str) -> List[str]:
    """
    Spellings a user may have meant, for fuzzy lookups:
    ABC-123 -> [ABC-123, ABC123]; ABC123 -> [ABC123, AB-C123, ABC-123, ABC1-23].
    """
    if not code:
        return []
    cleaned = code.strip().upper()
    variations = [cleaned]
    if "-" in cleaned:
        variations.append(cleaned.replace("-", "", 1))
    elif re.fullmatch(r"[A-Z0-9]+", cleaned) and len(cleaned) > 3:
        for i in range(2, min(4, len(cleaned) - 2) + 1):
            variations.append(cleaned[:i] + "-" + cleaned[i:])
    return variations


def game_code_from_text(text: Optional[str]) -> Optional[str]:
    """Game code from a /game/<code> URL or from a bare code."""
    if not text:
        return None
    cleaned = text.strip()
    m = _URL_CODE_RE.search(cleaned)
    if m:
        return normalize_game_code(m.group(1))
    return normalize_game_code(cleaned)


def derive_fallback_code(tx_hash: str) -> str:
    """
    Reproducible XXX-XXX code for a transaction whose logs could not be decoded.
    The first six of the last eight hex digits are mapped onto 0-9A-Z.
    """
    tail = (tx_hash or "")[-8:].upper()
    chars = []
    for i in range(6):
        digit = tail[i] if i < len(tail) else "0"
        try:
            idx = int(digit, 16)
        except ValueError:
            idx = 0
        chars.append(_FALLBACK_CHARS[idx % len(_FALLBACK_CHARS)])
    return "".join(chars[:3]) + "-" + "".join(chars[3:])


__all__ = [
    "normalize_game_code",
    "is_valid_game_code",
    "code_variations",
    "game_code_from_text",
    "derive_fallback_code",
]
