"""Prompt construction for ghost-text completions.

Builds the chat messages sent upstream from a completion request and the
selected model profile. Screenshots are attached only for multimodal
models and only when they are ``data:image`` URLs.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ghost_gateway.config import ModelProfile
from ghost_gateway.models import CompletionRequest

_logger = logging.getLogger("gateway")

SYSTEM_TEMPLATE = """\
You predict the text a user is about to type. Reply with the most likely \
direct continuation of the existing text and nothing else.
The user is typing on {url}. User location: {location}.
{previous_tab}
Rules:
- Keep the continuation short, 1-5 words, matching the style and language of the existing text.
- If the continuation starts a new word after a non-space character, begin with a single space.
- If the continuation completes the current word, do not begin with a space.
- Do not repeat the existing text. Do not use quotes or markdown."""

USER_TEMPLATE = (
    "{context}predict the text that directly follows this existing input:"
    '\n\nExisting Text: "{text}"'
)

_CONTEXT_TEXT_ONLY = "Based on the page URL ({url}){previous} and the user's location ({location}), "
_CONTEXT_SCREENSHOT = (
    "Based on the visual context near the input field in the screenshot, "
    "the page URL ({url}){previous} and the user's location ({location}), "
)
_CONTEXT_BOTH_SCREENSHOTS = (
    "Based on the visual context in the screenshots (current and previous tab), "
    "the page URL ({url}){previous} and the user's location ({location}), "
)


@dataclass
class Prompt:
    """A fully built upstream request."""

    model: str
    messages: List[Dict[str, Any]]
    max_tokens: int = 200
    temperature: float = 0.2


def user_location(request: CompletionRequest) -> str:
    """Return "City, Country", whichever parts are known."""
    parts = [p for p in (request.userCity, request.userCountry) if p]
    return ", ".join(parts) or "Not specified"


def _is_image(data_url: Optional[str]) -> bool:
    return bool(data_url) and data_url.startswith("data:image")


def build_system_message(request: CompletionRequest) -> Dict[str, Any]:
    previous_tab = ""
    if request.previousTabUrl:
        previous_tab = (
            "The user was previously on {}; use it as extra context if it "
            "relates to the current input.".format(request.previousTabUrl)
        )
    content = SYSTEM_TEMPLATE.format(
        url=request.url,
        location=user_location(request),
        previous_tab=previous_tab,
    )
    return {"role": "system", "content": content}


def build_user_message(
    request: CompletionRequest, text: str, profile: ModelProfile
) -> Dict[str, Any]:
    """Build the user message, attaching screenshots when the model can see them."""
    previous = ""
    if request.previousTabUrl:
        previous = ", the previous tab ({})".format(request.previousTabUrl)
    fmt = {"url": request.url, "previous": previous, "location": user_location(request)}

    has_current = _is_image(request.screenshot)
    has_previous = _is_image(request.previousScreenshot)
    if request.screenshot and not has_current:
        _logger.warning("Ignoring screenshot that is not a data:image URL")

    if not profile.multimodal or not has_current:
        prompt_text = USER_TEMPLATE.format(
            context=_CONTEXT_TEXT_ONLY.format(**fmt), text=text
        )
        return {"role": "user", "content": prompt_text}

    images = [request.screenshot]
    context = _CONTEXT_SCREENSHOT
    if has_previous:
        images.append(request.previousScreenshot)
        context = _CONTEXT_BOTH_SCREENSHOTS

    content: List[Dict[str, Any]] = [
        {"type": "image_url", "image_url": {"url": url}} for url in images
    ]
    content.append(
        {"type": "text", "text": USER_TEMPLATE.format(context=context.format(**fmt), text=text)}
    )
    return {"role": "user", "content": content}


def build_prompt(
    request: CompletionRequest, text: str, profile: ModelProfile
) -> Prompt:
    """Build the upstream prompt for request.

    Args:
        request: The validated completion request.
        text: The (possibly truncated) text before the cursor.
        profile: The model that will serve the request.
    """
    return Prompt(
        model=profile.model_id,
        messages=[
            build_system_message(request),
            build_user_message(request, text, profile),
        ],
        max_tokens=profile.max_tokens,
        temperature=profile.temperature,
    )
