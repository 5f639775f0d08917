"""
Root pytest configuration.

The backend modules are flat (config, database, main, ...), so the backend
directory goes on sys.path before tests import them.
"""
import sys
from pathlib import Path

BACKEND_DIR = Path(__file__).parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))
