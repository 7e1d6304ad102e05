"""
CallSpec Core Factory
=====================
Loads call contracts from a Python spec file and wires a Verifier for them.

A spec file is plain Python exposing either:
    build_registry() -> SpecRegistry | Iterable[CallSpec]
or
    SPECS = [CallSpec(...), ...]
"""

import importlib.util
import os
from pathlib import Path
from typing import Optional, Union

from .runtime import SuiteReport, Verifier, VerifierConfig
from .spec import SpecRegistry


class SpecLoadError(Exception):
    """Raised when a spec file cannot be imported or exposes no specs."""


def load_registry(spec_path: Union[str, Path]) -> SpecRegistry:
    """
    Factory Method: imports a spec file from disk and returns its registry.

    Invalid specs do not raise here; they are recorded in `registry.rejected`
    so the suite report can list them.

    Raises:
        FileNotFoundError: If the spec file does not exist.
        SpecLoadError: If the file fails to import or defines neither entry point.
    """
    path_obj = Path(spec_path).expanduser().resolve()
    if not path_obj.exists():
        raise FileNotFoundError(
            f"Spec file not found at: '{path_obj}'\n"
            f"   (Current working directory: '{os.getcwd()}')"
        )

    module_name = f"callspec_specfile_{path_obj.stem}"
    import_spec = importlib.util.spec_from_file_location(module_name, str(path_obj))
    if import_spec is None or import_spec.loader is None:
        raise SpecLoadError(f"Cannot import spec file: '{path_obj}'")
    module = importlib.util.module_from_spec(import_spec)
    try:
        import_spec.loader.exec_module(module)
    except Exception as e:
        raise SpecLoadError(f"Error while importing '{path_obj}': {type(e).__name__}: {e}") from e

    build = getattr(module, "build_registry", None)
    if callable(build):
        built = build()
        return built if isinstance(built, SpecRegistry) else SpecRegistry(built)

    specs = getattr(module, "SPECS", None)
    if specs is not None:
        return SpecRegistry(specs)

    raise SpecLoadError(f"'{path_obj}' defines neither build_registry() nor SPECS")


def create_verifier(config: Optional[VerifierConfig] = None) -> Verifier:
    """Factory Method: a Verifier with default collaborators for `config`."""
    return Verifier(config)


def verify_file(spec_path: Union[str, Path], config: Optional[VerifierConfig] = None) -> SuiteReport:
    """Load a spec file and run the whole suite."""
    registry = load_registry(spec_path)
    return create_verifier(config).run(registry)
