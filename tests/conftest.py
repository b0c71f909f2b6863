"""Shared test fixtures."""

import httpx
import pytest

from linkscribe.deps import ExtractionDeps


def _not_found(request: httpx.Request) -> httpx.Response:
    return httpx.Response(404)


@pytest.fixture
def make_deps():
    """Build ExtractionDeps whose HTTP client is served by ``handler``."""

    def _make(handler=_not_found, **kwargs) -> ExtractionDeps:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return ExtractionDeps(client=client, **kwargs)

    return _make
