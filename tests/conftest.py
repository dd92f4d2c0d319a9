from __future__ import annotations

import os
from pathlib import Path

import pytest

from gamestack.controller import Controller
from gamestack.core.context import OperationContext
from gamestack.state_store import MemoryStateStore
from tests.fakes import SourceAdapter


@pytest.fixture(scope="session", autouse=True)
def _load_dotenv_for_tests() -> None:
    """Load repo .env for local runs (PyCharm/CLI).

    This makes ECS_ENDPOINT_URL / AWS_* available to the opt-in integration
    tests without manually exporting them in your shell.

    In CI, we *don't* auto-load `.env` by default, so integration tests stay
    skipped unless explicitly opted-in.
    """

    # Opt-in locally with: GAMESTACK_LOAD_DOTENV_FOR_TESTS=1
    if os.environ.get("CI") and os.environ.get("GAMESTACK_LOAD_DOTENV_FOR_TESTS") != "1":
        return

    env_path = Path(__file__).resolve().parents[1] / ".env"
    if env_path.exists():
        from dotenv import load_dotenv

        load_dotenv(dotenv_path=env_path, override=False)


@pytest.fixture()
def ctx() -> OperationContext:
    return OperationContext.with_deadline_in(30)


@pytest.fixture()
def calls() -> list[tuple[str, str]]:
    return []


@pytest.fixture()
def controller_and_adapters(calls: list[tuple[str, str]]):
    """Controller over two source-capable doubles named alpha and beta."""

    alpha = SourceAdapter("alpha", calls)
    beta = SourceAdapter("beta", calls)
    controller = Controller(store=MemoryStateStore(), adapters=[alpha, beta])
    return controller, alpha, beta
