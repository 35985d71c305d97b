"""
Tests for the marker-table section parser and the section splicer (parser.py)
"""
from conftest import bullet_line, filler, listing_block, listing_document

from domain import BACKEND, BULLETS, DESCRIPTION, LISTING_SECTIONS, TITLES
from parser import (
    find_headings, parse_bullets, parse_document, parse_titles, splice_section,
    strip_count_annotation, strip_leading_heading,
)


class TestBlocks:
    def test_unlabeled_single_block(self, valid_document):
        doc = parse_document(valid_document)
        assert len(doc.blocks) == 1
        block = doc.blocks[0]
        assert block.label is None
        assert list(block.sections) == list(LISTING_SECTIONS)
        assert all(not block.sections[k].empty for k in LISTING_SECTIONS)

    def test_three_variants_in_source_order(self):
        text = listing_document(*(listing_block(label=l) for l in "ABC"))
        doc = parse_document(text)
        assert doc.labels() == ["A", "B", "C"]
        for block in doc.blocks:
            assert len(parse_titles(block.sections[TITLES])) == 2
            assert block.start <= block.sections[TITLES].start < block.sections[BACKEND].end <= block.end

    def test_variant_marker_variations(self):
        text = "## Variant a\n" + listing_block() + "\n**VARIANTE B**\n" + listing_block()
        assert parse_document(text).labels() == ["A", "B"]

    def test_empty_text(self):
        doc = parse_document("")
        assert len(doc.blocks) == 1
        assert all(s.empty for s in doc.blocks[0].sections.values())


class TestSectionMarkers:
    def test_tolerant_marker_phrasings(self):
        text = (
            "**Titles**\n1. Lumina one\n\n"
            "## Bullet Points\n• **Label:** body\n\n"
            "Product Description:\nSome text\n\n"
            "Search Terms:\nargan oil\n"
        )
        block = parse_document(text).blocks[0]
        assert block.sections[TITLES].lines() == ["1. Lumina one"]
        assert block.sections[BULLETS].lines() == ["• **Label:** body"]
        assert block.sections[DESCRIPTION].body.strip() == "Some text"
        assert block.sections[BACKEND].lines() == ["argan oil"]

    def test_heading_must_be_whole_line(self):
        text = "A) TITLES:\n1. Lumina titles for hair\n"
        assert [kind for _, _, kind in find_headings(text)] == [TITLES]

    def test_missing_section_is_empty_at_canonical_slot(self):
        block_text = listing_block()
        desc_at = block_text.index("C) DESCRIPTION")
        backend_at = block_text.index("D) BACKEND")
        text = block_text[:desc_at] + block_text[backend_at:]
        block = parse_document(text).blocks[0]
        sec = block.sections[DESCRIPTION]
        assert sec.heading == ""
        assert sec.empty
        assert sec.start == block.sections[BACKEND].start

    def test_research_and_sources_line(self, valid_document):
        research = "RESEARCH:\nBuyers search for frizz control.\nSOURCES: https://a.example/x, https://b.example/y\n"
        text = listing_document(listing_block(), research=research)
        doc = parse_document(text)
        assert doc.research is not None
        start, end = doc.sources_span
        assert text[start:end].startswith("SOURCES:")
        assert doc.blocks[0].sections[TITLES].heading == "A) TITLES:"


class TestSectionContents:
    def test_titles_strip_numbering_and_annotation(self):
        text = "A) TITLES:\n1. Lumina Argan Serum (999 chars)\n2) **Lumina Hair Oil** (12 Zeichen)\n"
        titles = parse_titles(parse_document(text).blocks[0].sections[TITLES])
        assert [t.text for t in titles] == ["Lumina Argan Serum", "Lumina Hair Oil"]
        assert [t.annotated_count for t in titles] == [999, 12]

    def test_bullet_shapes(self):
        text = (
            "B) BULLET POINTS:\n"
            "• **Deep hydration:** body one\n"
            "• **Deep hydration**: body two\n"
            "• Deep hydration: no bold\n"
        )
        bullets = parse_bullets(parse_document(text).blocks[0].sections[BULLETS], "•")
        assert [b.well_formed for b in bullets] == [True, True, False]
        assert bullets[0].label == "Deep hydration"
        assert bullets[1].body == "body two"

    def test_strip_count_annotation(self):
        assert strip_count_annotation("C) DESCRIPTION: (3456 chars)") == ("C) DESCRIPTION:", 3456)
        assert strip_count_annotation("no count") == ("no count", None)

    def test_strip_leading_heading(self):
        assert strip_leading_heading(DESCRIPTION, "C) DESCRIPTION:\nBody text") == "Body text"
        assert strip_leading_heading(DESCRIPTION, "Body text") == "Body text"


class TestSplice:
    def test_splice_preserves_other_sections(self):
        text = listing_document(*(listing_block(label=l) for l in "ABC"))
        doc = parse_document(text)
        new_bullets = "\n".join(bullet_line(210, f"New label {i}") for i in range(5))
        spliced = parse_document(splice_section(doc, 1, BULLETS, new_bullets))

        assert spliced.labels() == doc.labels()
        for index, (before, after) in enumerate(zip(doc.blocks, spliced.blocks)):
            for kind in LISTING_SECTIONS:
                if index == 1 and kind == BULLETS:
                    assert after.sections[kind].lines() == new_bullets.split("\n")
                    continue
                assert after.sections[kind].heading == before.sections[kind].heading
                assert after.sections[kind].body == before.sections[kind].body

    def test_splice_is_stable_under_reparse(self, valid_document):
        doc = parse_document(valid_document)
        replacement = filler(3400, lead="Meet")
        once = splice_section(doc, 0, DESCRIPTION, replacement)
        twice = splice_section(parse_document(once), 0, DESCRIPTION, replacement)
        assert once == twice
        assert parse_document(once).blocks[0].sections[DESCRIPTION].body.strip() == replacement

    def test_splice_drops_echoed_heading(self, valid_document):
        doc = parse_document(valid_document)
        out = splice_section(doc, 0, BACKEND, "D) BACKEND SEARCH TERMS:\nargan oil")
        assert out.count("BACKEND SEARCH TERMS") == 1
        assert parse_document(out).blocks[0].sections[BACKEND].lines() == ["argan oil"]

    def test_splice_inserts_missing_section(self):
        block_text = listing_block()
        desc_at = block_text.index("C) DESCRIPTION")
        backend_at = block_text.index("D) BACKEND")
        doc = parse_document(block_text[:desc_at] + block_text[backend_at:])
        out = parse_document(splice_section(doc, 0, DESCRIPTION, "Restored description"))
        block = out.blocks[0]
        assert block.sections[DESCRIPTION].heading == "C) DESCRIPTION:"
        assert block.sections[DESCRIPTION].body.strip() == "Restored description"
        assert block.sections[BACKEND].lines() == doc.blocks[0].sections[BACKEND].lines()


def test_research_right_after_first_variant_marker():
    research = "RESEARCH:\nBuyers search for frizz control.\nSOURCES: https://a.example/x\n"
    text = listing_document("VARIANT A\n" + research + "\n" + listing_block(), listing_block(label="B"))
    doc = parse_document(text)
    assert doc.labels() == ["A", "B"]
    assert doc.research is not None
    assert doc.research.end == doc.blocks[0].sections[TITLES].start
    start, end = doc.sources_span
    assert text[start:end] == "SOURCES: https://a.example/x"
    assert doc.blocks[0].sections[TITLES].heading == "A) TITLES:"
