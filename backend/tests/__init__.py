# Ensure the `eventaudio` package is importable without installing it
from __future__ import annotations

import sys
from pathlib import Path

# Add the backend directory to PYTHONPATH so imports like `from eventaudio.*` work
ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))
