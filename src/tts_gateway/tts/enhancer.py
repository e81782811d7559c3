"""
Prosody Markup for Synthesis Input.

Decorates plain text with SSML-style tags the provider understands, so
announcements sound like announcements and acronyms are spelled out.

Steps (applied in this order):
    1. Sentence openers (Alert, Warning, Error, System, Critical) get a
       300 ms pause before them
    2. Technical terms are wrapped in moderate emphasis
    3. Forms of address (Sir, Madam, Ma'am) get a 500 ms pause after them
    4. Known acronyms get an IPA pronunciation

Only the text sent to the primary provider is enhanced. Cache keys and
fallback providers always see the original text.

Example:
    >>> enhance("System error detected, Sir.")
    '<break time="300ms"/><emphasis level="moderate">System</emphasis> error detected, Sir<break time="500ms"/>.'
"""
from __future__ import annotations

import re
from typing import Dict

OPENER_PAUSE = '<break time="300ms"/>'
ADDRESS_PAUSE = '<break time="500ms"/>'

# Start of text, or start of a sentence after terminal punctuation
_OPENER_RE = re.compile(
    r"(?:^|(?<=[.!?]\s))(Alert|Warning|Error|System|Critical)\b",
    re.IGNORECASE,
)

_EMPHASIS_RE = re.compile(
    r"\b(system|status|analysis|diagnostic|protocol|initialized|activated)\b",
    re.IGNORECASE,
)

_ADDRESS_RE = re.compile(r"\b(Sir|Madam|Ma'am)\b", re.IGNORECASE)

ACRONYM_IPA: Dict[str, str] = {
    "API": "ˈeɪ.piː.aɪ",
    "CPU": "ˈsiː.piː.juː",
    "GPU": "ˈdʒiː.piː.juː",
    "RAM": "ræm",
    "URL": "ˈjuː.ɑːr.ɛl",
    "SQL": "ˈɛs.kjuː.ɛl",
    "AI": "ˈeɪ.aɪ",
}

# Case-sensitive: "ram" and "ai" inside ordinary words stay untouched
_ACRONYM_RE = re.compile(r"\b(" + "|".join(sorted(ACRONYM_IPA, key=len, reverse=True)) + r")\b")


def _phoneme(match: re.Match) -> str:
    term = match.group(1)
    return f'<phoneme alphabet="ipa" ph="{ACRONYM_IPA[term]}">{term}</phoneme>'


def enhance(text: str) -> str:
    """
    Add pause, emphasis and pronunciation markup to ``text``.

    Pure and deterministic; empty input returns empty output.
    """
    if not text:
        return text
    enhanced = _OPENER_RE.sub(lambda m: OPENER_PAUSE + m.group(1), text)
    enhanced = _EMPHASIS_RE.sub(r'<emphasis level="moderate">\1</emphasis>', enhanced)
    enhanced = _ADDRESS_RE.sub(lambda m: m.group(1) + ADDRESS_PAUSE, enhanced)
    enhanced = _ACRONYM_RE.sub(_phoneme, enhanced)
    return enhanced
