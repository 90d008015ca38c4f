"""
Shared fixtures for the sigfind test suite.
"""

import sys
import warnings
from pathlib import Path

import pytest

# Filter deprecation warnings from pytest-asyncio; we cannot fix the library.
warnings.filterwarnings(
    "ignore",
    category=DeprecationWarning,
    module="pytest_asyncio",
)

# Ensure the src/ directory is on the import path so that
# sigfind.core.config / sigfind.core.engine / etc. can be imported.
SRC_ROOT = Path(__file__).resolve().parent.parent / "src"
sys.path.insert(0, str(SRC_ROOT))

from sigfind.core.config import DiscoveryConfig  # noqa: E402
from sigfind.core.models import Candidate  # noqa: E402


# =============================================================================
# Source snippets
# =============================================================================

CALCULATOR_JS = """\
class Calculator {
  constructor() {
    this.result = 0;
  }

  add(a, b) {
    return a + b;
  }

  subtract(a, b) {
    return a - b;
  }

  multiply(a, b) {
    return a * b;
  }

  divide(a, b) {
    if (b === 0) {
      throw new Error('Division by zero');
    }
    return a / b;
  }
}

module.exports = Calculator;
"""

CALC_JS = """\
class Calc {
  add(a, b) { return a + b; }
  subtract(a, b) { return a - b; }
  multiply(a, b) { return a * b; }
  divide(a, b) { return a / b; }
}

module.exports = Calc;
"""

MOCK_CALCULATOR_JS = """\
class Calculator {
  add(a, b) { return 0; }
}

module.exports = Calculator;
"""

UNSAFE_CALCULATOR_JS = CALCULATOR_JS.replace(
    "    return a / b;", "    process.exit(1);\n    return a / b;"
)

CALCULATOR_PY = """\
class Calculator:
    \"\"\"Tiny calculator used by the discovery tests.\"\"\"

    precision = 2

    def __init__(self):
        self.result = 0

    def add(self, a, b):
        return a + b

    def subtract(self, a, b):
        return a - b


def make_calculator():
    return Calculator()
"""


def write(root: Path, relative: str, content: str) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def make_candidate(relative_path: str = "src/Calculator.js", **kwargs) -> Candidate:
    """Candidate stub for pure scoring tests (no file on disk)."""
    return Candidate(
        path="/project/" + relative_path,
        file_name=Path(relative_path).name,
        relative_path=relative_path,
        **kwargs,
    )


# =============================================================================
# Fixtures
# =============================================================================

CALCULATOR_SIGNATURE = {"name": "Calculator", "type": "class", "methods": ["add", "subtract"]}


@pytest.fixture
def calculator_signature() -> dict:
    return dict(CALCULATOR_SIGNATURE)


@pytest.fixture
def config() -> DiscoveryConfig:
    """Default config with the persisted cache inside the project root."""
    return DiscoveryConfig(cache_file=".sigfind-cache.json")


@pytest.fixture
def calculator_project(tmp_path: Path) -> Path:
    """
    /src/Calculator.js         real implementation
    /tests/Calculator.js       duplicate under a penalised path
    /src/legacy/Calc.js        same methods, unrelated name
    /node_modules/...          never traversed
    """
    write(tmp_path, "src/Calculator.js", CALCULATOR_JS)
    write(tmp_path, "tests/Calculator.js", CALCULATOR_JS)
    write(tmp_path, "src/legacy/Calc.js", CALC_JS)
    write(tmp_path, "node_modules/calc-lib/Calculator.js", CALCULATOR_JS)
    return tmp_path


@pytest.fixture
def python_project(tmp_path: Path) -> Path:
    write(tmp_path, "src/calculator.py", CALCULATOR_PY)
    write(tmp_path, "src/__pycache__/calculator.py", CALCULATOR_PY)
    write(tmp_path, "README.md", "# Calculator\n")
    return tmp_path
