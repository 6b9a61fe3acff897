"""
plainsub.llm - LLM subtitle refinement.

Pipeline Stage 4 (optional): send numbered batches of recognized lines to a
local LLM and keep whatever corrections come back in the same numbering.
"""

from __future__ import annotations
