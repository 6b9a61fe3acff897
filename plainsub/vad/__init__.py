"""
plainsub.vad - Speech activity detection.

Pipeline Stage 2: score the extracted audio window by window with the
Silero VAD classifier and collapse the probabilities into speech segments,
so the recognizer only sees audio that contains speech.
"""

from __future__ import annotations
