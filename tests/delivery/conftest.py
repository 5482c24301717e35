from datetime import UTC, datetime

import pytest
from protean.integrations.pytest import DomainFixture

from delivery import clock
from delivery.config import reset_settings
from delivery.references import reset_resolver
from delivery.routing import reset_route_optimizer

FROZEN_NOW = datetime(2025, 1, 15, 8, 0, tzinfo=UTC)


@pytest.fixture(scope="session")
def delivery_bed():
    from delivery.domain import delivery

    bed = DomainFixture(delivery)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(delivery_bed):
    with delivery_bed.domain_context():
        yield


@pytest.fixture(autouse=True)
def frozen_clock():
    """Pin the domain clock to 2025-01-15 08:00 UTC."""
    clock.set_clock(lambda: FROZEN_NOW)
    yield FROZEN_NOW
    clock.reset_clock()


@pytest.fixture(autouse=True)
def _reset_adapters():
    yield
    reset_resolver()
    reset_settings()
    reset_route_optimizer()
