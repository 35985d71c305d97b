from __future__ import annotations

import re
from typing import List, Optional

from constraints import ConstraintProfile
from domain import (
    BACKEND, BULLETS, DESCRIPTION, DOCUMENT, LISTING_SECTIONS, RESEARCH, TITLES,
    Document, Section, ValidationReport, VariantBlock, Violation,
)
from parser import bullet_visible_text, description_text, parse_bullets, parse_titles
from utils import (
    contains_emoji, contains_whole_word, find_urls, is_all_caps, most_repeated_word,
    normalize_ws, restricted_script, strip_emoji, transliterate_ascii, utf8_len,
)

_BACKEND_ALLOWED_RE = re.compile(r"[^A-Za-z0-9 \-]")


class _Collector:
    """Accumulates violations for one variant block."""

    def __init__(self, block: VariantBlock):
        self.block = block
        self.items: List[Violation] = []

    def add(self, section: str, rule: str, observed=None) -> None:
        self.items.append(Violation(
            variant=self.block.label,
            section=section,
            rule=rule,
            observed=observed,
            block_index=self.block.index,
        ))


def _check_charset(out: _Collector, kind: str, what: str, text: str, profile: ConstraintProfile, allow_emoji: bool = False) -> None:
    if profile.forbid_restricted_script:
        script = restricted_script(text)
        if script:
            out.add(kind, f"{what} contains {script} script", script)
    if profile.forbid_emoji and not allow_emoji and contains_emoji(text):
        out.add(kind, f"{what} contains emoji")


def _check_titles(out: _Collector, sec: Section, profile: ConstraintProfile, brand: str) -> None:
    titles = parse_titles(sec)
    if len(titles) != profile.title_count:
        out.add(TITLES, f"expected exactly {profile.title_count} titles", len(titles))
    for i, title in enumerate(titles, start=1):
        n = len(title.text)
        if n < profile.title_min or n > profile.title_max:
            out.add(TITLES, f"title {i} length outside [{profile.title_min}, {profile.title_max}]", n)
        if n > profile.title_hard_max:
            out.add(TITLES, f"title {i} exceeds hard maximum {profile.title_hard_max}", n)
        if profile.require_brand_prefix and brand and not title.text.lower().startswith(brand.lower()):
            out.add(TITLES, f"title {i} must start with brand '{brand}'", title.text[:40])
        _check_charset(out, TITLES, f"title {i}", title.text, profile)
        word, count = most_repeated_word(title.text)
        if count > profile.max_word_repeats:
            out.add(TITLES, f"title {i} repeats a word more than {profile.max_word_repeats} times", f"{word} x{count}")


def _check_bullets(out: _Collector, sec: Section, profile: ConstraintProfile) -> None:
    bullets = parse_bullets(sec, profile.bullet_marker)
    if len(bullets) != profile.bullet_count:
        out.add(BULLETS, f"expected exactly {profile.bullet_count} bullets", len(bullets))
    for i, bullet in enumerate(bullets, start=1):
        n = len(bullet_visible_text(bullet.raw, profile.bullet_marker))
        if n < profile.bullet_min or n > profile.bullet_max:
            out.add(BULLETS, f"bullet {i} length outside [{profile.bullet_min}, {profile.bullet_max}]", n)
        if not bullet.well_formed:
            out.add(BULLETS, f"bullet {i} must look like '{profile.bullet_marker} **Label:** text'", bullet.raw[:40])
            _check_charset(out, BULLETS, f"bullet {i}", bullet.raw, profile)
            continue
        if is_all_caps(strip_emoji(bullet.label)):
            out.add(BULLETS, f"bullet {i} label is all uppercase", bullet.label)
        _check_charset(out, BULLETS, f"bullet {i} label", bullet.label, profile,
                       allow_emoji=profile.allow_emoji_bullet_labels)
        _check_charset(out, BULLETS, f"bullet {i}", bullet.body, profile)


def _check_description(out: _Collector, sec: Section, profile: ConstraintProfile) -> None:
    text = description_text(sec)
    n = len(text)
    if n < profile.description_min or n > profile.description_max:
        out.add(DESCRIPTION, f"description length outside [{profile.description_min}, {profile.description_max}]", n)
    _check_charset(out, DESCRIPTION, "description", text, profile)


def _check_backend(out: _Collector, sec: Section, profile: ConstraintProfile, brand: str) -> None:
    lines = sec.lines()
    if len(lines) != 1:
        out.add(BACKEND, "backend search terms must be exactly one line", len(lines))
    line = " ".join(lines)
    size = utf8_len(transliterate_ascii(line))
    if size > profile.backend_max_bytes:
        out.add(BACKEND, f"backend search terms exceed {profile.backend_max_bytes} bytes", size)
    if profile.forbid_brand_in_backend and brand and (
        contains_whole_word(line, brand) or contains_whole_word(transliterate_ascii(line), transliterate_ascii(brand))
    ):
        out.add(BACKEND, f"backend search terms contain brand '{brand}'")
    if "," in line or ";" in line:
        out.add(BACKEND, "backend search terms must be space-separated (no commas or semicolons)")
    _check_charset(out, BACKEND, "backend search terms", line, profile)
    stray = sorted(set(_BACKEND_ALLOWED_RE.findall(line)) - {",", ";"})
    if stray:
        out.add(BACKEND, "backend search terms contain characters outside ASCII letters, digits and hyphens", "".join(stray))


_CHECKS = {
    TITLES: lambda out, sec, profile, brand: _check_titles(out, sec, profile, brand),
    BULLETS: lambda out, sec, profile, brand: _check_bullets(out, sec, profile),
    DESCRIPTION: lambda out, sec, profile, brand: _check_description(out, sec, profile),
    BACKEND: lambda out, sec, profile, brand: _check_backend(out, sec, profile, brand),
}


def validate_block(block: VariantBlock, profile: ConstraintProfile, brand: str) -> List[Violation]:
    out = _Collector(block)
    for kind in LISTING_SECTIONS:
        sec = block.section(kind)
        if sec is None or sec.empty:
            # No cascading length failures for a section that is not there
            out.add(kind, "missing section")
            continue
        _CHECKS[kind](out, sec, profile, brand)
    return out.items


def _locate(doc: Document, pos: int) -> tuple[Optional[VariantBlock], str]:
    if doc.research and doc.research.start <= pos < doc.research.end:
        return None, RESEARCH
    for block in doc.blocks:
        if block.start <= pos < block.end:
            for kind, sec in block.sections.items():
                if sec.start <= pos < sec.end:
                    return block, kind
            return block, DOCUMENT
    return None, DOCUMENT


def _check_urls(doc: Document) -> List[Violation]:
    violations: List[Violation] = []
    for start, _end, url in find_urls(doc.text):
        if doc.sources_span and doc.sources_span[0] <= start < doc.sources_span[1]:
            continue
        block, kind = _locate(doc, start)
        violations.append(Violation(
            variant=block.label if block else None,
            section=kind,
            rule="reference URL outside the sources line",
            observed=url,
            block_index=block.index if block and kind in LISTING_SECTIONS else None,
        ))
    return violations


def validate_document(
    doc: Document, profile: ConstraintProfile, brand: str, expected_variants: Optional[int] = None,
) -> ValidationReport:
    """Mechanical checks only; an empty violation list means the document passes.

    `expected_variants` is the number of variant blocks requested; a document
    with a different number of blocks gets one document-level violation.
    """
    brand = normalize_ws(brand)
    violations: List[Violation] = []
    if not doc.blocks:
        violations.append(Violation(variant=None, section=DOCUMENT, rule="no listing found"))
    elif expected_variants is not None and len(doc.blocks) != expected_variants:
        violations.append(Violation(
            variant=None,
            section=DOCUMENT,
            rule=f"expected {expected_variants} variant block{'s' if expected_variants != 1 else ''}",
            observed=len(doc.blocks),
        ))
    for block in doc.blocks:
        violations.extend(validate_block(block, profile, brand))
    if profile.confine_urls_to_sources:
        violations.extend(_check_urls(doc))
    return ValidationReport(violations=violations)
