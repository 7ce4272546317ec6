"""
TTS (Text-to-Speech) Services Package.

This package turns a finished soil story into a single audio file:

- text_segmenter: Cuts text into provider-sized segments at speech boundaries
- synthesizer: Fetches every segment and assembles them in order

Architecture Overview:

    ┌────────────┐     ┌───────────────┐     ┌──────────────────┐
    │ Story text │────▶│ TextSegmenter │────▶│ segment fetches  │
    └────────────┘     └───────────────┘     │ (concurrent)     │
                                             └──────────────────┘
                                                      │
                                                      ▼
                                             ┌──────────────────┐
                                             │ ordered assembly │
                                             └──────────────────┘
                                                      │
                                                      ▼
                                             ┌──────────────────┐
                                             │   AudioAsset     │
                                             └──────────────────┘
"""

from .synthesizer import AudioAsset, SpeechSynthesizer, SynthesisFailure
from .text_segmenter import TextSegmenter

__all__ = ["AudioAsset", "SpeechSynthesizer", "SynthesisFailure", "TextSegmenter"]
