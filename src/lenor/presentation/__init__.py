"""Presentation helpers that run alongside the conversation store."""

from __future__ import annotations

from lenor.presentation.typewriter import TypingRun, TypingSequencer, reveal_points, simulate_typing

__all__ = [
    "TypingRun",
    "TypingSequencer",
    "reveal_points",
    "simulate_typing",
]
