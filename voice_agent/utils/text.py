"""Text clean-up between the language model and speech synthesis."""

import re


_EMOJI_PATTERN = re.compile(
    "["
    "\U0001F600-\U0001F64F"  # emoticons
    "\U0001F300-\U0001F5FF"  # symbols & pictographs
    "\U0001F680-\U0001F6FF"  # transport & map symbols
    "\U0001F1E0-\U0001F1FF"  # flags
    "\U00002702-\U000027B0"
    "\U000024C2-\U0001F251"
    "]+"
)

_NON_SPEECH_PATTERN = re.compile(r"\[[A-Z_ ]+\]|\([a-z ]+\)")


def remove_think_tags(text: str) -> str:
    """Drop a reasoning preamble ending in </think> (Qwen, DeepSeek style)."""
    index = text.find("</think>")
    if index == -1:
        return text
    return text[index + len("</think>"):]


def remove_emoji(text: str) -> str:
    return _EMOJI_PATTERN.sub("", text)


def clean_for_speech(text: str) -> str:
    """Text as it should be spoken."""
    return remove_emoji(remove_think_tags(text)).strip()


def strip_non_speech_markers(text: str) -> str:
    """Remove transcriber markers such as [BLANK_AUDIO] or (music)."""
    return " ".join(_NON_SPEECH_PATTERN.sub(" ", text).split())
