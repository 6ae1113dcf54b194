"""Spec module loading utilities."""

from __future__ import annotations

import importlib.util
import sys
from pathlib import Path
from types import ModuleType

from .cases import TestCase


class SpecLoader:
    """Imports spec modules by path and caches them for the run."""

    def __init__(self) -> None:
        self._modules: dict[Path, ModuleType] = {}

    def load(self, path: Path) -> list[TestCase]:
        """Return the TestCase objects a spec module declares, in definition order."""

        module = self._import(path.resolve())
        cases = [value for value in vars(module).values() if isinstance(value, TestCase)]
        if not cases:
            raise ValueError(f"Spec module {path} does not declare any test cases")
        return cases

    def load_all(self, paths: list[Path]) -> list[TestCase]:
        cases: list[TestCase] = []
        seen: set[str] = set()
        for path in paths:
            for test_case in self.load(path):
                if test_case.test_id in seen:
                    raise ValueError(f"Duplicate test id {test_case.test_id} in {path}")
                seen.add(test_case.test_id)
                cases.append(test_case)
        return cases

    def _import(self, path: Path) -> ModuleType:
        module = self._modules.get(path)
        if module is not None:
            return module
        if not path.exists():
            raise FileNotFoundError(f"Spec file not found: {path}")
        module_name = f"intercept_specs.{path.stem.replace('.', '_').replace('-', '_')}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise ImportError(f"Cannot import spec module from {path}")
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        spec.loader.exec_module(module)
        self._modules[path] = module
        return module
