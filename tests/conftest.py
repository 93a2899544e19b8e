"""Shared fixtures for the storage decoding test suite."""

from __future__ import annotations

import pytest

from storage_fixtures import FakeFetcher


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()
