#!/usr/bin/env python3
# utils.py - text measurement and character-class helpers for listing copy
#
# Everything here is pure: no I/O except load_yaml_config, which resolves a
# config file the same way for the service and the tests.

from __future__ import annotations

import os
import re
import unicodedata
from collections import Counter
from typing import Dict, List, Optional, Tuple

import yaml

# ----------------
# YAML config
# ----------------

def load_yaml_config(path: str = None) -> dict:
    """Load a YAML config. Resolves relative to ./config if not found in CWD.

    Search order:
      1) Given absolute path (as-is)
      2) Relative path from current working directory
      3) Relative path from the service config/ directory
    """
    if path is None:
        path = "profiles.yaml"

    candidates = []
    if os.path.isabs(path):
        candidates.append(path)
    else:
        candidates.append(os.path.abspath(path))
        service_dir = os.path.dirname(os.path.abspath(__file__))
        candidates.append(os.path.join(service_dir, 'config', path))

    for p in candidates:
        if os.path.exists(p):
            with open(p, 'r', encoding='utf-8') as f:
                return yaml.safe_load(f) or {}
    raise FileNotFoundError(f"Config YAML not found. Tried: {candidates}")

# ----------------
# Measurement
# ----------------

def char_count(text: str) -> int:
    return len(text or "")


def utf8_len(text: str) -> int:
    return len((text or "").encode("utf-8"))


def normalize_ws(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()

# ----------------------------
# ASCII transliteration
# ----------------------------

# Letters whose ASCII spelling is a digraph rather than the bare base letter
_DIGRAPHS: Dict[str, str] = {
    "ä": "ae", "ö": "oe", "ü": "ue", "Ä": "Ae", "Ö": "Oe", "Ü": "Ue",
    "ß": "ss", "ẞ": "SS",
    "æ": "ae", "Æ": "Ae", "œ": "oe", "Œ": "Oe",
    "ø": "oe", "Ø": "Oe", "å": "aa", "Å": "Aa",
    "þ": "th", "Þ": "Th", "ð": "d", "Ð": "D",
    "ł": "l", "Ł": "L", "đ": "d", "Đ": "D",
}


def transliterate_ascii(text: str) -> str:
    """Map accented letters to ASCII; any other non-ASCII becomes a space."""
    out: List[str] = []
    for ch in text or "":
        if ord(ch) < 128:
            out.append(ch)
            continue
        if ch in _DIGRAPHS:
            out.append(_DIGRAPHS[ch])
            continue
        base = "".join(
            c for c in unicodedata.normalize("NFKD", ch)
            if not unicodedata.combining(c)
        )
        out.append(base if base and all(ord(c) < 128 for c in base) else " ")
    return "".join(out)

# ----------------------------
# Character classes
# ----------------------------

_RESTRICTED_RANGES: Tuple[Tuple[int, int, str], ...] = (
    (0x0370, 0x03FF, "Greek"),
    (0x0400, 0x052F, "Cyrillic"),
    (0x0590, 0x05FF, "Hebrew"),
    (0x0600, 0x06FF, "Arabic"),
    (0x0900, 0x097F, "Devanagari"),
    (0x0E00, 0x0E7F, "Thai"),
    (0x3040, 0x30FF, "Kana"),
    (0x4E00, 0x9FFF, "CJK"),
    (0xAC00, 0xD7AF, "Hangul"),
)

_EMOJI_RANGES: Tuple[Tuple[int, int], ...] = (
    (0x1F000, 0x1FAFF),  # mahjong .. symbols & pictographs ext-A
    (0x2600, 0x27BF),    # misc symbols, dingbats
    (0x2B00, 0x2BFF),    # arrows/stars used as emoji
    (0xFE0F, 0xFE0F),    # variation selector-16
    (0x200D, 0x200D),    # zero width joiner
)


def restricted_script(text: str) -> Optional[str]:
    """Name of the first restricted (non-Latin) script found, else None."""
    for ch in text or "":
        cp = ord(ch)
        for lo, hi, name in _RESTRICTED_RANGES:
            if lo <= cp <= hi:
                return name
    return None


def is_emoji(ch: str) -> bool:
    cp = ord(ch)
    return any(lo <= cp <= hi for lo, hi in _EMOJI_RANGES)


def contains_emoji(text: str) -> bool:
    return any(is_emoji(ch) for ch in text or "")


def strip_emoji(text: str) -> str:
    return "".join(ch for ch in text or "" if not is_emoji(ch))


def is_all_caps(text: str) -> bool:
    """True when the text has at least two letters and none are lowercase."""
    letters = [ch for ch in text or "" if ch.isalpha()]
    return len(letters) >= 2 and all(ch.isupper() for ch in letters)

# ----------------------------
# Words and repetition
# ----------------------------

_WORD_RE = re.compile(r"[^\W_]+(?:[-'][^\W_]+)*", re.UNICODE)

# Function words across the supported marketplace languages
_STOPWORDS = frozenset("""
and or for with the a an of to in on by from
und oder fuer für mit der die das den dem des ein eine einer fur zu im am von bei
et ou pour avec le la les un une des du de au aux en sur
e o per con il lo gli i una dei delle di da in su
y o para con el los las un una del al en
en of voor met het de een van op bij
i z na do dla ze w o
och eller med för till av en ett på
""".split())


def words(text: str) -> List[str]:
    return _WORD_RE.findall(text or "")


def most_repeated_word(text: str, min_len: int = 3) -> Tuple[str, int]:
    """Most frequent content word (case-insensitive) and its count."""
    counts = Counter(
        w.lower() for w in words(text)
        if len(w) >= min_len and w.lower() not in _STOPWORDS and not w.isdigit()
    )
    if not counts:
        return "", 0
    word, n = counts.most_common(1)[0]
    return word, n


def contains_whole_word(text: str, phrase: str) -> bool:
    """Case-insensitive whole-word (or whole-phrase) match."""
    phrase = normalize_ws(phrase)
    if not phrase:
        return False
    pattern = r"(?<![^\W_])" + r"\s+".join(map(re.escape, phrase.split())) + r"(?![^\W_])"
    return re.search(pattern, text or "", flags=re.IGNORECASE) is not None

# ----------------------------
# URLs
# ----------------------------

URL_RE = re.compile(r"(?:https?://|www\.)[^\s<>()\"']+", re.IGNORECASE)


def find_urls(text: str) -> List[Tuple[int, int, str]]:
    return [(m.start(), m.end(), m.group(0)) for m in URL_RE.finditer(text or "")]
