from __future__ import annotations

import re
from typing import Dict, List, Optional, Pattern, Tuple

from domain import (
    BACKEND, BULLETS, DESCRIPTION, LISTING_SECTIONS, RESEARCH, TITLES,
    Bullet, Document, Section, Title, VariantBlock,
)

# --- Marker table ---
# (section kind, accepted phrasings). Order of phrasings matters only for
# readability; a heading must be the whole line, so alternation order cannot
# make "SEARCH TERMS" steal "BACKEND SEARCH TERMS".
SECTION_MARKERS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    (RESEARCH, (r"research(?:\s+notes)?", r"market\s+research")),
    (TITLES, (r"titles?", r"title\s+options")),
    (BULLETS, (r"bullet\s+points?", r"bullets")),
    (DESCRIPTION, (r"product\s+description", r"description")),
    (BACKEND, (r"backend\s+search\s+terms", r"(?:backend\s+)?(?:search\s+terms|keywords)")),
)

# Headings the prompts ask for and the splicer writes when a section is missing
CANONICAL_HEADINGS: Dict[str, str] = {
    RESEARCH: "RESEARCH:",
    TITLES: "A) TITLES:",
    BULLETS: "B) BULLET POINTS:",
    DESCRIPTION: "C) DESCRIPTION:",
    BACKEND: "D) BACKEND SEARCH TERMS:",
}

_ANNOT = r"(?:\([^)\n]*\))?"
_DECOR = r"[ \t]*(?:\*\*|__)?[ \t]*"


def _heading_pattern(phrases: Tuple[str, ...]) -> Pattern[str]:
    return re.compile(
        r"^[ \t]*(?:#{1,6}[ \t]*)?" + _DECOR
        + r"(?:[A-E1-9][).:][ \t]*)?" + _DECOR
        + r"(?:" + "|".join(phrases) + r")"
        + _DECOR + _ANNOT + r"[ \t]*:?" + _DECOR + _ANNOT + _DECOR + r"$",
        re.IGNORECASE | re.MULTILINE,
    )


_HEADING_RES: Tuple[Tuple[str, Pattern[str]], ...] = tuple(
    (kind, _heading_pattern(phrases)) for kind, phrases in SECTION_MARKERS
)

VARIANT_RE = re.compile(
    r"^[ \t]*(?:#{1,6}[ \t]*)?(?:\*\*|__)?[ \t]*VARIANTE?[ \t]+([A-C])\b"
    r"(?:\*\*|__)?[ \t]*(?:[:\-–—)][^\n]*)?$",
    re.IGNORECASE | re.MULTILINE,
)

SOURCES_RE = re.compile(
    r"^[ \t]*(?:[-*][ \t]*)?(?:\*\*)?(?:sources|quellen|references)(?:\*\*)?[ \t]*:[^\n]*$",
    re.IGNORECASE | re.MULTILINE,
)

COUNT_ANNOTATION_RE = re.compile(
    r"[ \t]*[\(\[][ \t]*(\d+)[ \t]*(?:chars?|characters|zeichen|caract[eè]res|caratteri"
    r"|tekens|znak[oó]w|tecken|bytes?)[ \t]*[\)\]]",
    re.IGNORECASE,
)

_TITLE_PREFIX_RE = re.compile(r"^(?:\d+[.)]|[-*•]|title[ \t]*\d*[ \t]*:)[ \t]*", re.IGNORECASE)


def find_headings(text: str, start: int = 0, end: Optional[int] = None) -> List[Tuple[int, int, str]]:
    """All section headings in text[start:end] as (line_start, line_end, kind), in order."""
    end = len(text) if end is None else end
    found: List[Tuple[int, int, str]] = []
    taken = set()
    for kind, rx in _HEADING_RES:
        for m in rx.finditer(text, start, end):
            if m.start() in taken:
                continue
            taken.add(m.start())
            found.append((m.start(), m.end(), kind))
    found.sort()
    return found


def _line_end_skip(text: str, pos: int) -> int:
    return pos + 1 if pos < len(text) and text[pos] == "\n" else pos


def _make_section(text: str, kind: str, line_start: int, line_end: int, end: int) -> Section:
    body_start = min(_line_end_skip(text, line_end), end)
    return Section(
        kind=kind,
        start=line_start,
        body_start=body_start,
        end=end,
        heading=text[line_start:line_end],
        body=text[body_start:end],
    )


def _parse_block(text: str, label: Optional[str], index: int, start: int, end: int) -> VariantBlock:
    block = VariantBlock(label=label, index=index, start=start, end=end)
    headings = find_headings(text, start, end)
    found: Dict[str, Section] = {}
    for i, (hs, he, kind) in enumerate(headings):
        if kind not in LISTING_SECTIONS or kind in found:
            continue
        sec_end = headings[i + 1][0] if i + 1 < len(headings) else end
        found[kind] = _make_section(text, kind, hs, he, sec_end)

    # Missing sections become empty zero-width spans at their canonical slot
    for pos, kind in enumerate(LISTING_SECTIONS):
        if kind in found:
            continue
        later = [found[k].start for k in LISTING_SECTIONS[pos + 1:] if k in found]
        at = min(later) if later else end
        found[kind] = Section(kind=kind, start=at, body_start=at, end=at, heading="", body="")
    block.sections = {k: found[k] for k in LISTING_SECTIONS}
    return block


def parse_document(text: str) -> Document:
    """Split generated text into an optional research section and variant blocks.

    Never raises on malformed input: absent markers produce empty sections
    that the validator reports.
    """
    text = text or ""
    doc = Document(text=text)
    markers = list(VARIANT_RE.finditer(text))

    if markers:
        preamble_end = markers[0].start()
        for i, m in enumerate(markers):
            b_end = markers[i + 1].start() if i + 1 < len(markers) else len(text)
            doc.blocks.append(_parse_block(text, m.group(1).upper(), i, m.start(), b_end))
    else:
        listing = [h for h in find_headings(text) if h[2] in LISTING_SECTIONS]
        preamble_end = listing[0][0] if listing else 0
        doc.blocks.append(_parse_block(text, None, 0, preamble_end, len(text)))

    research_end = preamble_end
    research = [h for h in find_headings(text, 0, research_end) if h[2] == RESEARCH]
    if not research and markers:
        # Research placed right after the first variant marker still counts once
        first = doc.blocks[0]
        research_end = min(s.start for s in first.sections.values())
        research = [h for h in find_headings(text, first.start, research_end) if h[2] == RESEARCH]
    if research:
        hs, he, _ = research[0]
        doc.research = _make_section(text, RESEARCH, hs, he, research_end)
        m = SOURCES_RE.search(text, doc.research.body_start, research_end)
        if m:
            doc.sources_span = (m.start(), m.end())
    return doc

# --- Section contents ---

def strip_count_annotation(line: str) -> Tuple[str, Optional[int]]:
    """Remove every count annotation from a line; return the text and the last count seen."""
    counts = [int(m.group(1)) for m in COUNT_ANNOTATION_RE.finditer(line)]
    cleaned = COUNT_ANNOTATION_RE.sub("", line)
    return cleaned.rstrip(), (counts[-1] if counts else None)


def parse_titles(section: Section) -> List[Title]:
    titles: List[Title] = []
    for raw in section.lines():
        m = _TITLE_PREFIX_RE.match(raw)
        prefix = m.group(0) if m else ""
        rest, count = strip_count_annotation(raw[len(prefix):])
        text = rest.strip()
        if text.startswith("**") and text.endswith("**") and len(text) > 4:
            text = text[2:-2].strip()
        titles.append(Title(raw=raw, prefix=prefix, text=text, annotated_count=count))
    return titles


def bullet_pattern(marker: str) -> Pattern[str]:
    return re.compile(
        r"^" + re.escape(marker) + r"[ \t]+\*\*(?P<label>[^*\n]+?)(?P<c1>:)?[ \t]*\*\*"
        r"[ \t]*(?P<c2>:)?[ \t]*(?P<body>\S.*)$"
    )


def parse_bullets(section: Section, marker: str) -> List[Bullet]:
    rx = bullet_pattern(marker)
    bullets: List[Bullet] = []
    for raw in section.lines():
        m = rx.match(raw)
        if m and (m.group("c1") or m.group("c2")):
            bullets.append(Bullet(raw=raw, label=m.group("label").strip(), body=m.group("body").strip(), well_formed=True))
        else:
            bullets.append(Bullet(raw=raw))
    return bullets


def bullet_visible_text(raw: str, marker: str) -> str:
    """Customer-visible bullet text: marker and bold markup removed, whitespace collapsed."""
    t = raw.strip()
    if marker and t.startswith(marker):
        t = t[len(marker):]
    t = t.replace("**", "")
    return re.sub(r"\s+", " ", t).strip()


def description_text(section: Section) -> str:
    return section.body.strip()

# --- Splicing ---

def strip_leading_heading(kind: str, text: str) -> str:
    """Drop a heading line for `kind` if a replacement echoes it back."""
    body = (text or "").strip("\n")
    first, _, rest = body.partition("\n")
    for k, rx in _HEADING_RES:
        if k == kind and rx.fullmatch(first.strip()):
            return rest.strip("\n")
    return body


def splice_section(doc: Document, block_index: int, kind: str, new_body: str) -> str:
    """Return the document text with one section body replaced.

    Every byte outside the target body span is preserved; a missing section
    is inserted with its canonical heading at its canonical slot.
    """
    text = doc.text
    sec = doc.blocks[block_index].sections[kind]
    body = strip_leading_heading(kind, new_body).rstrip()

    if not sec.heading:
        lead = "" if sec.start == 0 or text[sec.start - 1] == "\n" else "\n"
        insert = f"{lead}{CANONICAL_HEADINGS[kind]}\n{body}\n"
        if sec.start < len(text):
            insert += "\n"
        return text[:sec.start] + insert + text[sec.start:]

    old = text[sec.body_start:sec.end]
    tail = old[len(old.rstrip()):].lstrip(" \t")
    if "\n" not in tail:
        tail = "\n\n" if sec.end < len(text) else "\n"
    lead = "" if sec.body_start > 0 and text[sec.body_start - 1] == "\n" else "\n"
    return text[:sec.body_start] + lead + body + tail + text[sec.end:]
