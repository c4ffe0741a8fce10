"""Post-processing of raw model output into a ghost-text completion.

A text-generation model occasionally answers conversationally, refuses,
wraps its answer in markdown or repeats the user's input. ``sanitize``
turns raw model text into a display-ready completion, or None when
nothing should be shown.

The deny-list of refusal and self-reference markers can be overridden from
a YAML file::

    deny_list:
      - "I cannot"
      - "as an AI"
      - "```"
"""

import re
from pathlib import Path
from typing import Iterable, List, Optional, Pattern

import yaml

DEFAULT_DENY_MARKERS: List[str] = [
    "I cannot",
    "I can't",
    "I can not",
    "I'm sorry",
    "I am sorry",
    "I apologize",
    "I'm unable",
    "I am unable",
    "as an AI",
    "AI language model",
    "AI assistant",
    "existing text",
    "continuation:",
    "```",
    "**",
]

# Characters that may directly follow a partially typed word.
_WORD_CONTINUATION_PUNCT = "'’-.,!?;:)"
_QUOTE_PAIRS = {'"': '"', "'": "'", "“": "”", "`": "`"}
_WORDLIKE = re.compile(r"^[\w' ]+$")

# Echoes shorter than this are too ambiguous to strip.
_MIN_ECHO_LENGTH = 3

_APOSTROPHES = str.maketrans({"’": "'", "‘": "'", "ʼ": "'"})


def _normalize_apostrophes(text: str) -> str:
    return text.translate(_APOSTROPHES)


class DenyList:
    """Compiled set of markers that disqualify a model answer.

    Word-like markers match case-insensitively on word boundaries so that
    e.g. "AI assistant" does not fire inside "TAI assistants". Markers
    containing symbols match as plain substrings.
    """

    def __init__(self, markers: Iterable[str]) -> None:
        self.markers = [m for m in markers if m and m.strip()]
        self._patterns: List[Pattern[str]] = [
            self._compile(m) for m in self.markers
        ]

    @staticmethod
    def _compile(marker: str) -> Pattern[str]:
        marker = _normalize_apostrophes(marker)
        escaped = re.escape(marker)
        if _WORDLIKE.match(marker):
            return re.compile(r"(?<!\w){}(?!\w)".format(escaped), re.IGNORECASE)
        return re.compile(escaped, re.IGNORECASE)

    def matches(self, text: str) -> Optional[str]:
        """Return the first marker found in text, or None."""
        text = _normalize_apostrophes(text)
        for marker, pattern in zip(self.markers, self._patterns):
            if pattern.search(text):
                return marker
        return None

    def __len__(self) -> int:
        return len(self.markers)


DEFAULT_DENY_LIST = DenyList(DEFAULT_DENY_MARKERS)


def load_deny_list(path: str) -> DenyList:
    """Load deny-list markers from a YAML file.

    Args:
        path: Path to the YAML file.

    Returns:
        A compiled DenyList.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the YAML does not contain a ``deny_list`` sequence.
    """
    deny_path = Path(path)
    if not deny_path.exists():
        raise FileNotFoundError("Sanitizer file not found: {}".format(path))

    with open(deny_path, "r") as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict) or not isinstance(raw.get("deny_list"), list):
        raise ValueError("Sanitizer file must contain a 'deny_list' sequence")

    return DenyList(str(m) for m in raw["deny_list"])


def _strip_quotes(text: str) -> str:
    if len(text) >= 2 and _QUOTE_PAIRS.get(text[0]) == text[-1]:
        return text[1:-1]
    return text


def _strip_echo(text: str, original_input: str) -> str:
    """Remove the user's own input if the model repeated it.

    The echo must end on a word boundary: "Theater" is not an echo of "The".
    """
    echo = original_input.strip()
    if len(echo) < _MIN_ECHO_LENGTH:
        return text
    if not text.lower().startswith(echo.lower()):
        return text
    rest = text[len(echo):]
    if rest[:1].isalnum() or rest[:1] == "_":
        return text
    return rest


def _ends_in_partial_word(original_input: str) -> bool:
    return bool(original_input) and original_input[-1].isalnum()


def _continues_word(text: str) -> bool:
    first = text[0]
    return first.isalnum() or first in _WORD_CONTINUATION_PUNCT


def _ends_in_space(original_input: str) -> bool:
    return bool(original_input) and original_input[-1].isspace()


def clean_completion(
    raw_text: Optional[str],
    original_input: str,
    deny_list: Optional[DenyList] = None,
) -> Optional[str]:
    """Turn raw model output into a completion independent of trailing space.

    The result starts with a single space whenever it begins a new word,
    including when original_input already ends in whitespace. Use
    fit_to_input to render it for a particular input.

    Args:
        raw_text: The model's answer as returned by the upstream.
        original_input: The text before the cursor that was completed.
        deny_list: Markers that disqualify an answer. Defaults to
            DEFAULT_DENY_LIST.

    Returns:
        The completion, or None when nothing should be shown.
    """
    if deny_list is None:
        deny_list = DEFAULT_DENY_LIST

    if raw_text is None or not raw_text.strip():
        return None

    if deny_list.matches(raw_text) is not None:
        return None

    model_spaced = raw_text[0].isspace()
    starts_new_word = model_spaced or _ends_in_space(original_input)
    body = raw_text.strip().splitlines()[0].rstrip()
    body = _strip_quotes(body)
    # A model that opened with a space started a new word, not an echo.
    if not model_spaced:
        body = _strip_echo(body, original_input)

    if body[:1].isspace():
        starts_new_word = True
    body = body.strip()
    if not body:
        return None

    if (
        _ends_in_partial_word(original_input)
        and not starts_new_word
        and not _continues_word(body)
    ):
        return None

    if starts_new_word and original_input:
        return " " + body
    return body


def fit_to_input(completion: str, original_input: str) -> str:
    """Drop the leading space of completion when the input already has one."""
    if completion.startswith(" ") and _ends_in_space(original_input):
        return completion[1:]
    return completion


def sanitize(
    raw_text: Optional[str],
    original_input: str,
    deny_list: Optional[DenyList] = None,
) -> Optional[str]:
    """Turn raw model output into a completion, or None for no suggestion.

    Returns:
        The completion to display. A leading single space means the
        completion starts a new word. None means nothing should be shown.
    """
    completion = clean_completion(raw_text, original_input, deny_list)
    if completion is None:
        return None
    return fit_to_input(completion, original_input)
