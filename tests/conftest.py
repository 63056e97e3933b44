"""Shared pytest fixtures."""

import pytest

from slurmjobs.config import ENV_VAR_MAP


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep SLURMJOBS_* variables of the calling shell out of the tests."""
    for env_var in ENV_VAR_MAP:
        monkeypatch.delenv(env_var, raising=False)
