from __future__ import annotations

from .model import (
    Domain, ChangeKind, EntryKind, Arity, SINGLE, OPTIONAL, ArgSlot, Fixture,
    FileEffect, Effects, CallSpec, Subcase, resolve_check, render_template,
)
from .validator import SpecValidator, topological_order
from .registry import SpecRegistry

__all__ = [
    "Domain", "ChangeKind", "EntryKind", "Arity", "SINGLE", "OPTIONAL", "ArgSlot", "Fixture",
    "FileEffect", "Effects", "CallSpec", "Subcase", "resolve_check", "render_template",
    "SpecValidator", "topological_order", "SpecRegistry",
]
