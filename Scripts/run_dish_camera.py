from __future__ import annotations

import sys
from pathlib import Path

# Allow `python Scripts/run_dish_camera.py ...` from a source checkout.
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from dish_camera.runner import main  # noqa: E402


if __name__ == "__main__":
    raise SystemExit(main())
