"""
Tests for counter refresh and backend sanitation (pipeline.py)
"""
import pytest

from conftest import bullet_section, description_section, filler, listing_block, listing_document

from domain import BACKEND, DESCRIPTION, TITLES
from parser import parse_document, parse_titles
from pipeline import clean_generated_text, postprocess, postprocess_text, sanitize_backend_terms
from utils import utf8_len


MESSY = (
    "```text\r\n"
    "VARIANT A  \r\n"
    "A) TITLES:\r\n"
    "1. Lumina Argan Oil Hair Serum (12 chars)\r\n"
    "2. **Lumina Hair Serum with Argan** (999 Zeichen)\r\n"
    "\r\n\r\n\r\n"
    "B) BULLET POINTS:\r\n"
    "• **Shine:** glossy finish\r\n"
    "C) DESCRIPTION:\r\n"
    "Short description text.\r\n"
    "D) BACKEND SEARCH TERMS: (1 bytes)\r\n"
    "Lumina Haaröl, Größe; argan-öl argan-öl ✨ serum\r\n"
    "```\r\n"
)


class TestBackendSanitation:
    def test_brand_and_commas_removed(self):
        assert sanitize_backend_terms("Lumina Feuchtigkeit, Gesicht", "Lumina", 249) == "Feuchtigkeit Gesicht"

    def test_transliteration_and_duplicates(self):
        out = sanitize_backend_terms("Haaröl Größe, haaröl; Argan-Öl -serum- ✨", "Lumina", 249)
        assert out == "Haaroel Groesse Argan-Oel serum"

    def test_multi_word_brand(self):
        out = sanitize_backend_terms("blue fox argan bluefox serum Blue Fox", "Blue Fox", 249)
        assert out == "argan serum"

    def test_brand_inside_other_word_kept(self):
        assert sanitize_backend_terms("luminous serum", "Lumina", 249) == "luminous serum"

    def test_hard_trim_drops_whole_tokens(self):
        out = sanitize_backend_terms("aaaa bbbb cccc dddd", "", 11)
        assert out == "aaaa bbbb"
        assert utf8_len(out) <= 11

    @pytest.mark.parametrize("line", [
        "Lumina Feuchtigkeit, Gesicht",
        "crème visage hydratante; anti-âge",
        "a" * 300,
    ])
    def test_output_alphabet(self, line):
        out = sanitize_backend_terms(line, "Lumina", 249)
        assert utf8_len(out) <= 249
        assert all(ch.isascii() and (ch.isalnum() or ch in " -") for ch in out)
        assert "  " not in out
        assert "," not in out and ";" not in out


class TestCounters:
    def test_title_counters_refreshed(self, profile):
        out = postprocess_text(MESSY, profile, "Lumina")
        titles = parse_titles(parse_document(out).blocks[0].sections[TITLES])
        assert [t.annotated_count for t in titles] == [len(t.text) for t in titles]
        assert titles[1].text == "Lumina Hair Serum with Argan"

    def test_description_and_backend_counters(self, profile):
        out = postprocess_text(MESSY, profile, "Lumina")
        block = parse_document(out).blocks[0]
        assert block.sections[DESCRIPTION].heading == "C) DESCRIPTION: (23 chars)"
        line = block.sections[BACKEND].lines()[0]
        assert line == "Haaroel Groesse argan-oel serum"
        assert block.sections[BACKEND].heading == f"D) BACKEND SEARCH TERMS: ({utf8_len(line)} bytes)"

    def test_content_outside_backend_untouched(self, profile):
        out = postprocess_text(MESSY, profile, "Lumina")
        block = parse_document(out).blocks[0]
        assert block.sections[DESCRIPTION].body.strip() == "Short description text."
        assert "• **Shine:** glossy finish" in out

    def test_brand_only_backend_becomes_empty(self, profile):
        text = "A) TITLES:\n1. Lumina x\n\nD) BACKEND SEARCH TERMS:\nLumina\n"
        out = postprocess_text(text, profile, "Lumina")
        assert parse_document(out).blocks[0].sections[BACKEND].heading == "D) BACKEND SEARCH TERMS: (0 bytes)"


class TestIdempotency:
    def test_messy_document(self, profile):
        once = postprocess_text(MESSY, profile, "Lumina")
        assert postprocess_text(once, profile, "Lumina") == once

    def test_clean_document_is_unchanged(self, profile, valid_document):
        assert postprocess_text(valid_document, profile, "Lumina") == valid_document

    def test_three_variants(self, profile):
        text = listing_document(*(
            listing_block(label=l, backend="Lumina argan, öl öl") for l in "ABC"
        ))
        once = postprocess_text(text, profile, "Lumina")
        assert postprocess_text(once, profile, "Lumina") == once
        for block in parse_document(once).blocks:
            assert block.sections[BACKEND].lines() == ["argan oel"]

    def test_document_wrapper(self, profile):
        doc = parse_document(MESSY)
        once = postprocess(doc, profile, "Lumina")
        assert postprocess(once, profile, "Lumina").text == once.text


def test_clean_generated_text():
    raw = "```markdown\r\nA) TITLES:   \r\n\r\n\r\n\r\n1. x\r\n```"
    assert clean_generated_text(raw) == "A) TITLES:\n\n1. x\n"
    assert clean_generated_text("") == ""


def test_only_backend_can_lose_content(profile):
    text = listing_document(
        "A) TITLES:\n1. " + filler(210, lead="Lumina") + "\n\n"
        + bullet_section(count=5, length=300) + "\n"
        + description_section(5000) + "\n"
        + "D) BACKEND SEARCH TERMS:\n" + " ".join(f"term{i}" for i in range(80)) + "\n"
    )
    out = parse_document(postprocess_text(text, profile, "Lumina")).blocks[0]
    before = parse_document(text).blocks[0]
    assert parse_titles(out.sections[TITLES])[0].text == parse_titles(before.sections[TITLES])[0].text
    assert out.sections[DESCRIPTION].body == before.sections[DESCRIPTION].body
    assert utf8_len(out.sections[BACKEND].lines()[0]) <= profile.backend_max_bytes
