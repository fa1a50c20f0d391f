# =============================================================================
# Shared Test Fixtures
# =============================================================================

import pytest

from docqa.services.upstream import UpstreamClient
from fakes import FakeProvider, make_upstream


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def upstream(provider: FakeProvider) -> UpstreamClient:
    return make_upstream(provider)
