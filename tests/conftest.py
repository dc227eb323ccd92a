import sys
from pathlib import Path

# Robustly locate repository root (directory containing src/voicegate)
_this_file = Path(__file__).resolve()
ROOT = None
for parent in _this_file.parents:
    if (parent / "src" / "voicegate").exists():
        ROOT = parent
        break
if ROOT is None:
    # Fallback to one level up
    ROOT = _this_file.parent.parent

SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
# Shared fakes live next to the tests
TESTS = _this_file.parent
if str(TESTS) not in sys.path:
    sys.path.insert(0, str(TESTS))
