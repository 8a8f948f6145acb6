"""
Unit tests for the fincalc package surface.

Tests that the package and every module import cleanly in a fresh
interpreter and that the top-level names are exported.
"""

import importlib
import subprocess
import sys

import pytest

MODULES = [
    "fincalc.exceptions",
    "fincalc.constants",
    "fincalc.config",
    "fincalc.types",
    "fincalc.utils",
    "fincalc.requests",
    "fincalc.results",
    "fincalc.numeric",
    "fincalc.goals",
    "fincalc.concurrency",
    "fincalc.montecarlo",
    "fincalc.debt",
    "fincalc.expenses",
    "fincalc.benefits",
    "fincalc.stress",
    "fincalc.serialization",
    "fincalc.guard",
    "fincalc.cache",
    "fincalc.service",
    "fincalc.cli",
]


class TestImports:

    def test_fresh_interpreter_imports_package(self):
        proc = subprocess.run(
            [sys.executable, "-c", "import fincalc; print(fincalc.__version__)"],
            capture_output=True,
            text=True,
            timeout=60,
        )

        assert proc.returncode == 0, proc.stderr
        assert proc.stdout.strip() == "0.1.0"

    @pytest.mark.parametrize("name", MODULES)
    def test_module_imports(self, name):
        module = importlib.import_module(name)

        for exported in getattr(module, "__all__", ()):
            assert hasattr(module, exported), f"{name}.{exported}"

    def test_top_level_names(self):
        import fincalc

        for name in ("CalculationService", "CalculationRequest", "CalculationResult", "BatchItem", "FinCalcError"):
            assert hasattr(fincalc, name)
