"""
Integration tests for navgraph.

These tests verify that all components work together correctly,
including persistence round trips and concurrent access.
"""

import pytest


# Integration test markers
integration = pytest.mark.integration
slow = pytest.mark.slow
