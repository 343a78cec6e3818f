#!/usr/bin/env python3
import sys
from pathlib import Path

SRC = Path(__file__).resolve().parent / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from cmkmatrix.cli import main  # noqa: E402


if __name__ == "__main__":
    raise SystemExit(main())
