from __future__ import annotations

import re
from typing import List, Tuple

from constraints import ConstraintProfile
from domain import BACKEND, DESCRIPTION, TITLES, Document, Section
from logger import get_logger
from parser import (
    description_text, parse_document, parse_titles, strip_count_annotation,
)
from utils import normalize_ws, transliterate_ascii, utf8_len

logger = get_logger(__name__)

_FENCE_RE = re.compile(r"^[ \t]*```[^\n]*$\n?", re.MULTILINE)
_BACKEND_DISALLOWED_RE = re.compile(r"[^A-Za-z0-9\- ]")

Edit = Tuple[int, int, str]

# --- Raw text hygiene ---

def clean_generated_text(text: str) -> str:
    """Normalize line endings, drop code fences, trim line ends, cap blank runs.

    Idempotent; the post-processor runs it before and after its edits so a
    second pass sees exactly what the first pass produced.
    """
    t = (text or "").replace("\r\n", "\n").replace("\r", "\n")
    t = _FENCE_RE.sub("", t)
    t = "\n".join(ln.rstrip() for ln in t.split("\n"))
    t = re.sub(r"\n{3,}", "\n\n", t)
    t = t.strip("\n")
    return t + "\n" if t else ""

# --- Counter annotations ---

def annotate(line: str, count: int, unit: str) -> str:
    """Replace any count annotation on a line with `(count unit)` at its end."""
    bare, _ = strip_count_annotation(line)
    return f"{bare.rstrip()} ({count} {unit})"


def render_title_line(raw: str) -> str:
    title = parse_titles(Section(kind=TITLES, start=0, body_start=0, end=len(raw), heading="", body=raw))[0]
    return f"{title.prefix}{title.text} ({len(title.text)} chars)"


def _title_edits(sec: Section) -> List[Edit]:
    out: List[str] = []
    for line in sec.body.splitlines(keepends=True):
        content = line.rstrip("\n")
        nl = line[len(content):]
        out.append((render_title_line(content) if content.strip() else content) + nl)
    return [(sec.body_start, sec.end, "".join(out))]


def _description_edits(sec: Section) -> List[Edit]:
    heading = annotate(sec.heading, len(description_text(sec)), "chars")
    return [(sec.start, sec.start + len(sec.heading), heading)]

# --- Backend search terms ---

def _brand_tokens(brand: str) -> List[str]:
    return _BACKEND_DISALLOWED_RE.sub(" ", transliterate_ascii(brand or "")).lower().split()


def sanitize_backend_terms(line: str, brand: str, max_bytes: int) -> str:
    """Restrict a backend line to ASCII words separated by single spaces.

    Accented letters become ASCII digraphs, other non-ASCII and punctuation
    become separators, the brand is removed, duplicates dropped (first kept)
    and trailing whole tokens are cut until the line fits `max_bytes`.
    """
    t = _BACKEND_DISALLOWED_RE.sub(" ", transliterate_ascii(line or ""))
    tokens = [tok.strip("-") for tok in t.split()]
    tokens = [tok for tok in tokens if tok]

    brand_seq = _brand_tokens(brand)
    if brand_seq:
        joined = "".join(brand_seq)
        kept: List[str] = []
        i = 0
        while i < len(tokens):
            window = [tok.lower() for tok in tokens[i:i + len(brand_seq)]]
            if window == brand_seq:
                i += len(brand_seq)
                continue
            if tokens[i].lower() == joined:
                i += 1
                continue
            kept.append(tokens[i])
            i += 1
        tokens = kept

    seen = set()
    unique: List[str] = []
    for tok in tokens:
        key = tok.lower()
        if key in seen:
            continue
        seen.add(key)
        unique.append(tok)

    while unique and utf8_len(" ".join(unique)) > max_bytes:
        unique.pop()
    return " ".join(unique)


def _backend_edits(text: str, sec: Section, brand: str, profile: ConstraintProfile) -> List[Edit]:
    line = sanitize_backend_terms(" ".join(sec.lines()), brand, profile.backend_max_bytes)
    tail = sec.body[len(sec.body.rstrip()):].lstrip(" \t")
    if "\n" not in tail and sec.end < len(text):
        tail = "\n"
    heading = annotate(sec.heading, utf8_len(line), "bytes")
    return [
        (sec.start, sec.start + len(sec.heading), heading),
        (sec.body_start, sec.end, line + tail),
    ]

# --- Entry points ---

def _apply_edits(text: str, edits: List[Edit]) -> str:
    for start, end, repl in sorted(edits, key=lambda e: e[0], reverse=True):
        text = text[:start] + repl + text[end:]
    return text


def postprocess_text(text: str, profile: ConstraintProfile, brand: str) -> str:
    """Refresh every counter annotation and sanitize every backend line.

    Deterministic and idempotent. Only the backend line may lose content.
    """
    text = clean_generated_text(text)
    doc = parse_document(text)
    brand = normalize_ws(brand)
    edits: List[Edit] = []
    for block in doc.blocks:
        sec = block.section(TITLES)
        if sec is not None and sec.heading and not sec.empty:
            edits.extend(_title_edits(sec))
        sec = block.section(DESCRIPTION)
        if sec is not None and sec.heading and not sec.empty:
            edits.extend(_description_edits(sec))
        sec = block.section(BACKEND)
        if sec is not None and sec.heading and not sec.empty:
            edits.extend(_backend_edits(text, sec, brand, profile))
    return clean_generated_text(_apply_edits(text, edits))


def postprocess(doc: Document, profile: ConstraintProfile, brand: str) -> Document:
    return parse_document(postprocess_text(doc.text, profile, brand))
