# tests/test_text_processing.py
import pytest

from app.services.text_processing import TextProcessor, is_compound_pair


@pytest.fixture
def tp():
    return TextProcessor()


def test_clean_text_collapses_whitespace_and_ampersand(tp):
    assert tp.clean_text("  Tomatoes  &  Basil ") == "tomatoes and basil"
    assert tp.clean_text("Mac &amp; Cheese") == "mac and cheese"


def test_clean_text_smart_quotes(tp):
    assert tp.clean_text("“Basil” ‘leaves’") == "\"basil\" 'leaves'"


@pytest.mark.parametrize("raw", ["", "   ", None, 123])
def test_clean_text_empty_or_non_string(tp, raw):
    assert tp.clean_text(raw) == ""


def test_tokenize_drops_stop_words_and_modifiers(tp):
    tokens = tp.tokenize("fresh organic tomatoes, red bell peppers and basil leaves")
    assert tokens == ["tomatoes", "bell", "peppers", "basil", "leaves"]


def test_tokenize_keeps_hyphen_and_drops_numbers(tp):
    assert tp.tokenize("2 cups of sun-dried tomatoes!") == ["sun-dried", "tomatoes"]


def test_tokenize_only_filler_words(tp):
    assert tp.tokenize("the and with some") == []
    assert tp.tokenize("!!! ???") == []


def test_extract_potential_ingredients_filters_quantities(tp):
    out = tp.extract_potential_ingredients(["cup", "tomatoes", "tbsp", "salt", "2", "cheese"])
    assert out == ["tomatoes", "salt", "cheese"]


def test_extract_potential_ingredients_drops_amounts_and_single_letters(tp):
    assert tp.extract_potential_ingredients(["2lb", "x", "beef", "500"]) == ["beef"]


def test_compound_known_pairs(tp):
    assert tp.extract_compound_ingredients(["olive", "oil", "garlic"]) == ["olive oil", "garlic"]
    assert tp.extract_compound_ingredients(["ground", "beef"]) == ["ground beef"]
    assert tp.extract_compound_ingredients(["soy", "sauce", "rice"]) == ["soy sauce", "rice"]


def test_compound_each_token_used_once(tp):
    # tomatoes+bell 被通用規則合併後，peppers 只能再跟 basil 配
    out = tp.extract_compound_ingredients(["tomatoes", "bell", "peppers", "basil", "leaves"])
    assert out == ["tomatoes bell", "peppers basil", "leaves"]


def test_compound_short_words_stay_separate(tp):
    assert tp.extract_compound_ingredients(["egg", "ham", "pea"]) == ["egg", "ham", "pea"]


@pytest.mark.parametrize(
    "first,second,expected",
    [
        ("tomato", "sauce", True),
        ("coconut", "oil", True),
        ("goat", "cheese", True),
        ("ground", "turkey", True),
        ("black", "pepper", True),
        ("fish", "oil", False),
        ("egg", "roll", False),
    ],
)
def test_is_compound_pair(first, second, expected):
    assert is_compound_pair(first, second) is expected


def test_candidates_include_component_words(tp):
    assert tp.candidates("olive oil and garlic") == ["olive oil", "garlic", "olive", "oil"]


def test_candidates_dedupes(tp):
    out = tp.candidates("salt salt")
    assert out.count("salt") == 1
    assert tp.candidates("") == []
