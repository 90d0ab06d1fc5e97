"""Shared fixtures for unit tests."""

import sys
from pathlib import Path

import pytest

# Add project root and this directory to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from helpers import make_client  # noqa: E402


@pytest.fixture
def fake_client():
    """ClassifierClient answering "[]" to every call."""
    return make_client()


@pytest.fixture
def projects_dir(tmp_path):
    path = tmp_path / "projects"
    path.mkdir()
    return path
