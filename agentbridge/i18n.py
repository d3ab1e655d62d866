"""User-facing notices.

Only English ships with the bridge; hosts can register translations with
``register_messages`` at startup.
"""

import logging

logger = logging.getLogger(__name__)

DEFAULT_LOCALE = "en"

_MESSAGES: dict[str, dict[str, str]] = {
    DEFAULT_LOCALE: {
        "ai.no_result": "Sorry! The LLM did not return a result.",
        "ai.stream_error": "Sorry! An error occurred while accessing the LLM. See server logs for details.",
        "ai.cancelled": "_Response cancelled._",
        "ai.no_longer_access": "Sorry, you no longer have access to the original thread.",
        "ai.summarize_thread": "Sure, I will summarize this thread: {link}\n",
        "ai.action_items": "Sure, I will find action items in this thread: {link}\n",
        "ai.open_questions": "Sure, I will find open questions in this thread: {link}\n",
        "ai.analyze_thread": "Sure, I will analyze this thread: {link}\n",
    },
}


def register_messages(locale: str, messages: dict[str, str]) -> None:
    _MESSAGES.setdefault(locale, {}).update(messages)


def localize(key: str, locale: str = DEFAULT_LOCALE) -> str:
    """Translate key for locale, falling back to the base language then English."""
    for candidate in (locale, locale.split("-")[0].split("_")[0], DEFAULT_LOCALE):
        messages = _MESSAGES.get(candidate)
        if messages and key in messages:
            return messages[key]
    logger.warning(f"Missing translation for {key}")
    return key
