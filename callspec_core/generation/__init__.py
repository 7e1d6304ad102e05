from __future__ import annotations

from .generator import ArgumentGenerator, GenerationFailure, shrink_candidates, subcase_seed

__all__ = [
    "ArgumentGenerator",
    "GenerationFailure",
    "shrink_candidates",
    "subcase_seed",
]
