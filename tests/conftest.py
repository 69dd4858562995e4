"""
Global pytest configuration and fixtures for the comfyflow test suite.

Fixtures live in ``tests/fixtures`` and are registered here so every test
module can request them by name.
"""


# Import all fixtures from the shared fixture module
from fixtures.comfy_fixtures import *


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "e2e: end-to-end orchestration scenario against the fake server")
