"""conftest.py for e2e tests.

Adds the demo and attack script directories to sys.path so the example
scripts (lifecycle_sample, tamper_block, ...) can be imported directly.
"""
import sys
from pathlib import Path

# cropchain-core/tests/e2e/conftest.py -> repo root is 3 levels up
_REPO_ROOT = Path(__file__).parents[3]
_DEMO_DIR = _REPO_ROOT / "examples" / "demo"
_ATTACKS_DIR = _REPO_ROOT / "examples" / "attacks"

for _p in [str(_DEMO_DIR), str(_ATTACKS_DIR)]:
    if _p not in sys.path:
        sys.path.insert(0, _p)
