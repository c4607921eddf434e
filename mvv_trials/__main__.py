from __future__ import annotations

import sys
from pathlib import Path

from .app import run


def main() -> int:
    """Run one trial; an optional first argument is the trial config JSON."""
    config_path = Path(sys.argv[1]) if len(sys.argv) > 1 else None
    return run(config_path=config_path)


if __name__ == "__main__":
    raise SystemExit(main())
