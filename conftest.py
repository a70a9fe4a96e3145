"""
Root pytest configuration.

Options live in pyproject.toml under [tool.pytest.ini_options]. Property
tests run full pipelines per example, so the hypothesis deadline is off;
set HYPOTHESIS_PROFILE=thorough for a longer search.
"""

import os
import sys
from pathlib import Path

from hypothesis import settings

# Project root on the path so `config`, `scoring` and `execution` import
# without an editable install
sys.path.insert(0, str(Path(__file__).parent))

settings.register_profile("default", deadline=None)
settings.register_profile("thorough", deadline=None, max_examples=500)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "default"))
