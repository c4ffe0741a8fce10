"""Tests for the response sanitizer.

Covers:
- Empty and whitespace-only answers
- Deny-listed refusals, self-references and markdown
- Partial-word plausibility checks
- Leading-space handling, quotes and echoed input
- Loading the deny list from YAML
"""

from pathlib import Path

import pytest

from ghost_gateway.sanitizer import (
    DenyList,
    clean_completion,
    fit_to_input,
    load_deny_list,
    sanitize,
)


@pytest.mark.parametrize("raw", ["", "   ", "\n\t", None])
def test_empty_answers_give_no_suggestion(raw) -> None:
    assert sanitize(raw, "Hello") is None


@pytest.mark.parametrize("original", ["", "Hello", "I need h", "Dear Mr."])
def test_refusals_rejected_regardless_of_input(original: str) -> None:
    assert sanitize("I cannot help with that.", original) is None


@pytest.mark.parametrize(
    "raw",
    [
        " I'm sorry, I can't do that",
        "As an AI language model, I",
        " here is ```python",
        " **bold** text",
        "I CANNOT comply",
    ],
)
def test_deny_listed_markers_rejected(raw: str) -> None:
    assert sanitize(raw, "Please write") is None


def test_word_markers_do_not_fire_inside_words() -> None:
    """Markers match whole words only."""
    deny = DenyList(["help"])
    assert sanitize("elp", "I need h", deny) == "elp"
    assert sanitize(" helpful tips", "Some", deny) == " helpful tips"
    assert sanitize(" help me", "Please", deny) is None


def test_new_word_keeps_single_leading_space() -> None:
    assert sanitize(" fox jumps", "The quick brown") == " fox jumps"
    assert sanitize("   fox jumps  ", "The quick brown") == " fox jumps"


def test_completes_partial_word_without_space() -> None:
    assert sanitize("own fox", "The quick br") == "own fox"


def test_implausible_partial_word_continuation_rejected() -> None:
    assert sanitize("(see below)", "The quick br") is None
    assert sanitize("#tag", "Hello wor") is None


def test_punctuation_may_follow_a_word() -> None:
    assert sanitize(", how are you", "Hello") == ", how are you"


def test_no_partial_word_check_after_terminal_punctuation() -> None:
    assert sanitize("Smith", "Dear Mr.") == "Smith"


def test_leading_space_dropped_when_input_ends_with_space() -> None:
    assert sanitize(" fox", "The quick brown ") == "fox"


def test_wrapping_quotes_removed() -> None:
    assert sanitize('" fox jumps"', "The quick brown") == " fox jumps"


def test_echoed_input_removed() -> None:
    assert sanitize("The quick brown fox", "The quick brown") == " fox"
    assert sanitize("the quick brown", "The quick brown") is None


def test_echo_must_end_on_a_word_boundary() -> None:
    assert sanitize("Theater tickets", "The") == "Theater tickets"
    assert sanitize("Theater tickets", "The ") == "Theater tickets"
    assert sanitize("The, end", "The") == ", end"


def test_spaced_answer_is_never_treated_as_echo() -> None:
    """A leading space means the model started a new word."""
    assert sanitize(" Theater tickets", "The") == " Theater tickets"
    assert sanitize(" The quick brown fox", "The quick brown") == " The quick brown fox"


def test_typographic_apostrophes_hit_the_deny_list() -> None:
    assert sanitize(" I’m sorry, I can’t do that", "Please write") is None
    assert sanitize(" I can’t", "Well") is None


def test_clean_completion_keeps_new_word_space_for_any_input() -> None:
    assert clean_completion("brown fox", "The quick ") == " brown fox"
    assert clean_completion(" brown fox", "The quick") == " brown fox"
    assert clean_completion("own fox", "The quick br") == "own fox"


def test_fit_to_input() -> None:
    assert fit_to_input(" brown fox", "The quick") == " brown fox"
    assert fit_to_input(" brown fox", "The quick ") == "brown fox"
    assert fit_to_input("own fox", "The quick br") == "own fox"


def test_only_first_line_kept() -> None:
    assert sanitize(" fox jumps\nover the lazy dog", "The quick brown") == " fox jumps"


def test_deterministic() -> None:
    results = {sanitize(" fox jumps", "The quick brown") for _ in range(5)}
    assert results == {" fox jumps"}


def test_load_deny_list_from_yaml(tmp_path: Path) -> None:
    path = tmp_path / "sanitizer.yaml"
    path.write_text('deny_list:\n  - "no way"\n  - "~~"\n')

    deny = load_deny_list(str(path))

    assert len(deny) == 2
    assert sanitize(" no way", "Hello", deny) is None
    assert sanitize(" ~~strike", "Hello", deny) is None
    # Defaults are replaced, not extended
    assert sanitize(" I cannot wait", "Hello", deny) == " I cannot wait"


def test_load_deny_list_missing_file() -> None:
    with pytest.raises(FileNotFoundError):
        load_deny_list("/tmp/nonexistent_sanitizer.yaml")


def test_load_deny_list_invalid(tmp_path: Path) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text("- just\n- a list\n")

    with pytest.raises(ValueError, match="deny_list"):
        load_deny_list(str(path))
