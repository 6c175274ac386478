"""
Test that every entry module imports cleanly in a fresh interpreter

Each import runs in its own subprocess so modules loaded by other tests
cannot hide an import cycle.
"""

import subprocess
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent

ENTRY_MODULES = [
    "triage.analyzer",
    "triage.analyzer.base",
    "triage.scanner",
    "triage.scanner.coordinator",
    "triage.interception",
    "triage.cli.console",
    "main",
]


def import_fresh(module):
    return subprocess.run(
        [sys.executable, "-c", f"import {module}"],
        cwd=ROOT,
        capture_output=True,
        text=True,
        timeout=60
    )


def test_entry_modules_import_in_fresh_interpreter():
    for module in ENTRY_MODULES:
        result = import_fresh(module)
        assert result.returncode == 0, f"{module}: {result.stderr}"
