"""Shared test setup.

Puts the project root and this directory on ``sys.path`` so ``triage_app`` and
the ``fakes`` helpers import without an editable install.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest

HERE = Path(__file__).resolve().parent
for path in (HERE.parent, HERE):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))


@pytest.fixture(autouse=True)
def _debug_logging(caplog):
    caplog.set_level(logging.DEBUG, logger="triage_app")
    yield
