# prompt_schema.py

from __future__ import annotations

from typing import Dict, List

from constraints import ConstraintProfile
from domain import BACKEND, BULLETS, DESCRIPTION, TITLES, VariantBlock, Violation
from parser import CANONICAL_HEADINGS

LANGUAGE_MAP: Dict[str, str] = {
    "amazon.de": "German (DE)",
    "amazon.fr": "French (FR)",
    "amazon.it": "Italian (IT)",
    "amazon.es": "Spanish (ES)",
    "amazon.nl": "Dutch (NL)",
    "amazon.pl": "Polish (PL)",
    "amazon.se": "Swedish (SE)",
    "amazon.co.uk": "English (UK)",
}
DEFAULT_LANGUAGE = "English"


def output_language(marketplace: str) -> str:
    return LANGUAGE_MAP.get((marketplace or "").strip().lower(), DEFAULT_LANGUAGE)


SECTION_REPAIR: Dict[str, Dict[str, str]] = {
    TITLES: {
        "description": "the two product titles",
        "format": "Exactly {title_count} lines, numbered '1.' and '2.', each ending with its character count as '(N chars)'.",
        "rules": (
            "- Each title starts with the brand name '{brand}'.\n"
            "- Each title is {title_min}-{title_max} characters (never more than {title_hard_max}).\n"
            "- Primary keyword right after the brand, then 1-2 strongest USPs.\n"
            "- No word more than {max_word_repeats} times; no keyword stuffing; no emoji."
        ),
    },
    BULLETS: {
        "description": "the bullet points",
        "format": "Exactly {bullet_count} lines, each '{bullet_marker} **Label:** text' on a single line.",
        "rules": (
            "- Each bullet is {bullet_min}-{bullet_max} characters.\n"
            "- Label is a short keyword phrase in normal capitalization (never ALL CAPS).\n"
            "- Keyword first, then the micro-benefit; no fluff.\n"
            "- {emoji_rule}"
        ),
    },
    DESCRIPTION: {
        "description": "the product description",
        "format": "Plain paragraphs only, no heading line, no lists, no URLs.",
        "rules": (
            "- Total length {description_min}-{description_max} characters (aim for the middle).\n"
            "- Expand with usage, ingredients/materials, benefits and care details from the product info.\n"
            "- No emoji; do not invent certifications or claims."
        ),
    },
    BACKEND: {
        "description": "the backend search terms",
        "format": "One single line of lowercase keywords separated by single spaces.",
        "rules": (
            "- At most {backend_max_bytes} bytes; ASCII only (write ae/oe/ue/ss for umlauts).\n"
            "- No brand name, no duplicates, no commas or semicolons.\n"
            "- No generic filler words (e.g. creme, pflege, produkt)."
        ),
    },
}


def _fmt(template: str, profile: ConstraintProfile, brand: str) -> str:
    emoji_rule = (
        "Each label starts with one fitting emoji; no emoji anywhere else."
        if profile.allow_emoji_bullet_labels else "No emoji."
    )
    return template.format(brand=brand, emoji_rule=emoji_rule, **profile.__dict__)


def build_instructions(profile: ConstraintProfile, language: str, brand: str, web_search: bool = False) -> str:
    research = ""
    if web_search:
        research = (
            "Start the output with this block exactly once, before VARIANT A or the first section:\n"
            "RESEARCH:\n"
            "<3-6 short notes on competitor keywords and buyer wording; no URLs here>\n"
            "SOURCES: <comma-separated URLs you used, on this single line only>\n\n"
        )
    return f"""You are an Amazon Marketplace Listing Expert.

GOAL:
Create HIGH-CONVERTING, Amazon-optimized listings that comply with Amazon policies.

OUTPUT LANGUAGE: {language}
Section headings stay in English exactly as shown below.

TITLE RULES:
{_fmt(SECTION_REPAIR[TITLES]["rules"], profile, brand)}

BULLET RULES:
{_fmt(SECTION_REPAIR[BULLETS]["rules"], profile, brand)}

DESCRIPTION RULES:
{_fmt(SECTION_REPAIR[DESCRIPTION]["rules"], profile, brand)}

BACKEND SEARCH TERMS:
{_fmt(SECTION_REPAIR[BACKEND]["rules"], profile, brand)}

INGREDIENTS: if the product info contains an INCI list, copy it verbatim.
URLS: never put URLs anywhere except the SOURCES line.

{research}OUTPUT STRUCTURE (for each variant):
{CANONICAL_HEADINGS[TITLES]}
1. <title> (N chars)
2. <title> (N chars)
{CANONICAL_HEADINGS[BULLETS]}
{profile.bullet_marker} **Label:** text
({profile.bullet_count} bullets)
{CANONICAL_HEADINGS[DESCRIPTION]} (N chars)
<description>
{CANONICAL_HEADINGS[BACKEND]} (N bytes)
<search terms>
Return ONLY these sections (A-D), plain text."""


def build_input(
    brand_name: str,
    marketplace: str,
    product_info: str,
    usp: str = "",
    brand_voice: str = "",
    variants: int = 1,
) -> str:
    usp_line = f"USPs: {usp}\n" if usp else ""
    voice_line = f"Brand voice: {brand_voice}\n" if brand_voice else ""
    which = "THREE distinct variants (A/B/C)" if variants == 3 else "ONE version"
    labels = (
        "\nIf 3 variants, clearly label them exactly as:\nVARIANT A\nVARIANT B\nVARIANT C"
        if variants == 3 else ""
    )
    return (
        f"Brand name: {brand_name}\n"
        f"{usp_line}Marketplace: {marketplace}\n"
        f"{voice_line}\n"
        f"User product info:\n{product_info}\n\n"
        f"Generate {which}.\n"
        f"Each variant must fully include A-D.{labels}"
    )


def _violation_lines(violations: List[Violation]) -> str:
    return "\n".join(f"- {v.describe()}" for v in violations)


def build_full_repair_input(base_input: str, document: str, violations: List[Violation]) -> str:
    return (
        f"{base_input}\n\n"
        "PREVIOUS OUTPUT:\n"
        f"{document.strip()}\n\n"
        "THE PREVIOUS OUTPUT BROKE THESE RULES:\n"
        f"{_violation_lines(violations)}\n\n"
        "Rewrite the ENTIRE output so every rule holds. Keep the same structure, "
        "the same variant labels and the same section headings. Return only the corrected output."
    )


def build_section_repair(
    kind: str,
    profile: ConstraintProfile,
    language: str,
    brand: str,
    base_input: str,
    block: VariantBlock,
    current: str,
    violations: List[Violation],
) -> tuple[str, str]:
    """Instructions + input asking for one section's replacement content only."""
    entry = SECTION_REPAIR[kind]
    instructions = (
        "You are an Amazon Marketplace Listing Expert fixing one part of a listing.\n"
        f"OUTPUT LANGUAGE: {language}\n\n"
        f"Rewrite ONLY {entry['description']}.\n"
        f"FORMAT: {_fmt(entry['format'], profile, brand)}\n"
        f"RULES:\n{_fmt(entry['rules'], profile, brand)}\n\n"
        "Return only the replacement content: no heading, no commentary, no other sections."
    )
    where = f" of {block.name}" if block.label else ""
    text = (
        f"{base_input}\n\n"
        f"CURRENT {entry['description'].upper()}{where}:\n"
        f"{current.strip() or '(missing)'}\n\n"
        "PROBLEMS:\n"
        f"{_violation_lines(violations)}"
    )
    return instructions, text
