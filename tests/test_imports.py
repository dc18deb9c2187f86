"""Every package must import cleanly on its own, in a fresh interpreter."""

import os
import subprocess
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent

PACKAGES = [
    "fgpredict.aggregates",
    "fgpredict.matches",
    "fgpredict.ml",
    "fgpredict.ml.predictor",
    "fgpredict.patterns",
    "fgpredict.predictions",
    "fgpredict.settlement",
    "fgpredict.jobs",
    "fgpredict.routes.api",
    "fgpredict.main",
]


@pytest.mark.parametrize("module", PACKAGES)
def test_imports_first(module):
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(ROOT), env.get("PYTHONPATH")]))
    result = subprocess.run(
        [sys.executable, "-c", f"import {module}"],
        capture_output=True,
        text=True,
        cwd=ROOT,
        env=env,
    )
    assert result.returncode == 0, result.stderr
