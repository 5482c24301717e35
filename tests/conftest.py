import os
from pathlib import Path

import pytest

_LAYER_MARKERS = ("domain", "application", "bdd", "integration")


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Protean environment (domain.toml section) used by the test run",
    )


def pytest_sessionstart(session):
    """Initialize the delivery domain once and keep its context active for collection."""
    os.environ["PROTEAN_ENV"] = session.config.option.env

    from delivery.domain import delivery

    delivery.init()
    delivery.domain_context().push()


def pytest_collection_modifyitems(config, items):
    """Mark each test with the layer directory it lives in."""
    for item in items:
        parts = Path(item.fspath).parts
        layer = next((name for name in _LAYER_MARKERS if name in parts), None)
        if layer is None:
            continue
        item.add_marker(getattr(pytest.mark, layer))
        if layer == "integration" and not any(m.name == "fast" for m in item.iter_markers()):
            item.add_marker(pytest.mark.slow)


@pytest.fixture(scope="session", autouse=True)
def delivery_schema():
    from delivery.domain import delivery
    from delivery.utils.db import drop_db, setup_db

    setup_db(delivery)
    yield
    drop_db(delivery)


@pytest.fixture(autouse=True)
def reset_stores():
    """Empty every provider and the event store after each test."""
    yield

    from protean import current_domain

    for provider in current_domain.providers.values():
        provider._data_reset()
    current_domain.event_store.store._data_reset()
