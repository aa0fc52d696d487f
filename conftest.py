"""
Root conftest.py to configure pytest for all test discovery.

Adds the project root and src/ to the Python path so both
`src.service_bot` and `service_bot` imports work.
"""

import sys
from pathlib import Path

project_root = Path(__file__).parent
sys.path.insert(0, str(project_root / 'src'))
sys.path.insert(0, str(project_root))
