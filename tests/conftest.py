"""Shared pytest fixtures and test-run configuration."""

from __future__ import annotations

import os

import pytest
from budget_checkpoint.catalog import ProfileCatalog
from budget_checkpoint.schema import ProgressNotes


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add custom pytest options for integration test execution."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run tests marked as integration (external dependencies).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip integration tests unless explicitly enabled."""
    run_integration = config.getoption("--run-integration")
    env_enabled = os.getenv("RUN_INTEGRATION_TESTS") == "1"
    if run_integration or env_enabled:
        return

    skip_marker = pytest.mark.skip(
        reason=(
            "Integration tests are disabled by default. "
            "Use --run-integration or set RUN_INTEGRATION_TESTS=1."
        )
    )
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture
def catalog() -> ProfileCatalog:
    """Built-in catalog; ``token-200k`` is 200000 units, 0.75/0.90, four tiers."""
    return ProfileCatalog.default()


@pytest.fixture
def notes() -> ProgressNotes:
    """Non-empty progress notes accepted by every tier."""
    return ProgressNotes(
        completed=("Parsed input corpus",),
        in_progress=("Indexing documents",),
        next_steps=("Build summary table", "Verify totals"),
        freeform_context="Indexer resumes from shard 7.",
    )
