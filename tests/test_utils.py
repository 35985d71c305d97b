"""
Tests for text measurement and character-class helpers (utils.py)
"""
import pytest

from utils import (
    contains_emoji, contains_whole_word, find_urls, is_all_caps, load_yaml_config,
    most_repeated_word, normalize_ws, restricted_script, strip_emoji, transliterate_ascii,
    utf8_len,
)


class TestTransliteration:
    @pytest.mark.parametrize("raw,expected", [
        ("Größe", "Groesse"),
        ("Feuchtigkeitscreme für Männer", "Feuchtigkeitscreme fuer Maenner"),
        ("crème brûlée", "creme brulee"),
        ("Łódź", "Lodz"),
        ("smörgåsbord", "smoergaasbord"),
    ])
    def test_accented_letters_become_ascii(self, raw, expected):
        assert transliterate_ascii(raw) == expected

    def test_non_latin_becomes_space(self):
        out = transliterate_ascii("oil серум")
        assert out.strip() == "oil"
        assert len(out) == len("oil серум")

    def test_ascii_untouched(self):
        assert transliterate_ascii("hair-oil 100ml") == "hair-oil 100ml"


class TestMeasurement:
    def test_utf8_len_counts_bytes(self):
        assert utf8_len("abc") == 3
        assert utf8_len("ä") == 2
        assert utf8_len("") == 0

    def test_normalize_ws(self):
        assert normalize_ws("  a \n\t b  ") == "a b"


class TestCharacterClasses:
    def test_restricted_script_names_script(self):
        assert restricted_script("Serum для волос") == "Cyrillic"
        assert restricted_script("Argan 护发") == "CJK"
        assert restricted_script("Argan oil, Größe M") is None

    def test_emoji_detection_and_stripping(self):
        assert contains_emoji("💧 Hydration")
        assert contains_emoji("Sun ☀️")
        assert not contains_emoji("Hydration – 24h")
        assert strip_emoji("💧 Hydration").strip() == "Hydration"

    @pytest.mark.parametrize("text,expected", [
        ("DEEP HYDRATION", True),
        ("Deep Hydration", False),
        ("UV", True),
        ("A", False),
        ("100 ML", True),
        ("123", False),
    ])
    def test_is_all_caps(self, text, expected):
        assert is_all_caps(text) is expected


class TestWords:
    def test_most_repeated_word_ignores_case_and_stopwords(self):
        word, count = most_repeated_word("Serum for hair and serum for SERUM lovers and the hair")
        assert word == "serum"
        assert count == 3

    def test_most_repeated_word_empty(self):
        assert most_repeated_word("") == ("", 0)

    def test_contains_whole_word(self):
        assert contains_whole_word("argan Lumina serum", "lumina")
        assert not contains_whole_word("luminous serum", "Lumina")
        assert contains_whole_word("the Blue Fox brand", "blue  fox")


def test_find_urls_reports_offsets():
    text = "see https://a.example/x and www.b.example"
    urls = find_urls(text)
    assert [u for _, _, u in urls] == ["https://a.example/x", "www.b.example"]
    start, end, url = urls[0]
    assert text[start:end] == url


def test_load_yaml_config_resolves_service_config_dir():
    data = load_yaml_config("profiles.yaml")
    assert "standard" in data


def test_load_yaml_config_missing_file():
    with pytest.raises(FileNotFoundError):
        load_yaml_config("does-not-exist.yaml")
