"""
Spec registry: the ordered set of CallSpecs a verification suite runs.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, List, Optional

from .model import CallSpec
from .validator import SpecValidator
from ..errors import ErrorRecord, SpecInvalid

logger = logging.getLogger(__name__)


class SpecRegistry:
    """
    Usage:
        registry = SpecRegistry()
        registry.register(CallSpec(name="echo", program="echo", slots=(...)))
    """

    def __init__(self, specs: Optional[Iterable[CallSpec]] = None):
        self._specs: Dict[str, CallSpec] = {}
        self.rejected: List[ErrorRecord] = []
        if specs is not None:
            self.extend(specs)

    def register(self, spec: CallSpec) -> CallSpec:
        """Validate and add one spec. Raises SpecInvalid (or DependencyCycle)."""
        if spec.name in self._specs:
            raise SpecInvalid("A spec with this name is already registered", spec=spec.name)
        SpecValidator().validate(spec)
        self._specs[spec.name] = spec
        logger.debug("registered spec %s (%d slots)", spec.name, len(spec.slots))
        return spec

    def extend(self, specs: Iterable[CallSpec]) -> List[ErrorRecord]:
        """Register many specs; invalid ones are recorded in `rejected` instead of raising."""
        new: List[ErrorRecord] = []
        for spec in specs:
            try:
                self.register(spec)
            except SpecInvalid as e:
                logger.warning("rejected spec %s: %s", spec.name, e.message)
                new.append(e.to_record(subject=spec.name))
        self.rejected.extend(new)
        return new

    def get(self, name: str) -> CallSpec:
        return self._specs[name]

    def names(self) -> List[str]:
        return list(self._specs)

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __iter__(self) -> Iterator[CallSpec]:
        return iter(self._specs.values())

    def __len__(self) -> int:
        return len(self._specs)
