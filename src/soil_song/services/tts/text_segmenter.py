"""
Text Segmenter for the segment-limited TTS endpoint.

The speech endpoint only accepts short inputs, so a narrative has to be cut into
an ordered list of segments before synthesis. Cuts prefer natural speech
boundaries:

    1. the last punctuation mark (followed by whitespace) inside the limit
    2. otherwise the last space inside the limit
    3. otherwise a hard cut at the limit

Usage:
    segmenter = TextSegmenter(max_chars=200, punctuation=",.?!")
    segments = segmenter.split(story_text)
"""

import re
from typing import List

_WHITESPACE = re.compile(r"\s+")


class TextSegmenter:
    """
    Split text into ordered segments no longer than ``max_chars``.

    Attributes:
        max_chars: Hard upper bound on segment length
        punctuation: Characters treated as preferred cut points
    """

    DEFAULT_PUNCTUATION = ",.?!"

    def __init__(self, max_chars: int = 200, punctuation: str = DEFAULT_PUNCTUATION):
        if max_chars < 1:
            raise ValueError("max_chars must be positive")
        self.max_chars = max_chars
        self.punctuation = frozenset(punctuation)

    def split(self, text: str) -> List[str]:
        """
        Split ``text`` into segments.

        Whitespace runs collapse to single spaces. Blank input yields an empty list.
        """
        remaining = _WHITESPACE.sub(" ", text or "").strip()
        segments: List[str] = []

        while len(remaining) > self.max_chars:
            cut = self._find_cut(remaining)
            segment = remaining[:cut].strip()
            if segment:
                segments.append(segment)
            remaining = remaining[cut:].strip()

        if remaining:
            segments.append(remaining)
        return segments

    def _find_cut(self, text: str) -> int:
        window = text[: self.max_chars]

        # Punctuation counts only when followed by a space, so "6.5" stays whole.
        for index in range(len(window) - 1, -1, -1):
            if window[index] in self.punctuation and (
                index + 1 >= len(text) or text[index + 1] == " "
            ):
                return index + 1

        space = window.rfind(" ")
        if space > 0:
            return space

        return self.max_chars
