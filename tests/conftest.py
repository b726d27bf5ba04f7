from typing import Optional

import pytest
from fastapi.testclient import TestClient

from rxgateway.app import create_app
from rxgateway.config import Settings
from rxgateway.invoker import ModelInvoker
from tests.helpers import FakeClient


@pytest.fixture
def settings() -> Settings:
    return Settings(
        api_key="test-key",
        pre_call_delay=0.0,
        fallback_word_delay=0.0,
        stream_timeout=5.0,
    )


@pytest.fixture
def unconfigured_settings() -> Settings:
    return Settings(
        api_key=None,
        pre_call_delay=0.0,
        fallback_word_delay=0.0,
        stream_timeout=5.0,
    )


@pytest.fixture
def make_client(settings):
    def _make(fake: Optional[FakeClient] = None, app_settings: Optional[Settings] = None) -> TestClient:
        s = app_settings or settings
        invoker = ModelInvoker(fake, s.model_name, pre_call_delay=0.0)
        return TestClient(create_app(s, invoker))
    return _make
