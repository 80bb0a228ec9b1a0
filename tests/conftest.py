"""Shared pytest fixtures and configuration."""

import os
import pytest
from datetime import date
from unittest.mock import MagicMock, AsyncMock
from freezegun import freeze_time
from langchain_core.messages import AIMessage

from motorwise.services.mot_history import MotHistoryClient
from motorwise.services.pipeline import PipelineOrchestrator
from motorwise.services.plate_recognizer import VisionPlateRecognizer
from motorwise.services.purchase_advisor import PurchaseAdvisorySynthesizer
from motorwise.services.register_lookup import RegisterLookupClient
from motorwise.services.stage_queue import InMemoryStageQueue
from motorwise.services.vehicle_store import InMemoryVehicleStore
from motorwise.utils.config import PipelineConfig

# Set test environment variables
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-key")
os.environ.setdefault("LOG_FORMAT", "text")

TODAY = date(2026, 3, 15)


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def offline_config() -> PipelineConfig:
    """No credentials: vision and generation disabled, synthetic register/history data."""
    return PipelineConfig(environment="test")


@pytest.fixture
def vision_config() -> PipelineConfig:
    """Vision and text generation credentials set, register/history still synthetic."""
    return PipelineConfig(environment="test", openai_api_key="sk-test-key")


@pytest.fixture
def live_config() -> PipelineConfig:
    """Production config with every credential set, for HTTP client tests."""
    return PipelineConfig(
        environment="production",
        openai_api_key="sk-test-key",
        register_api_key="dvla-test-key",
        mot_history_api_key="mot-test-key",
        register_api_url="https://register.test/vehicles",
        mot_history_api_url="https://history.test/mot-tests",
        webhook_secret="webhook-test-secret",
    )


@pytest.fixture
def store() -> InMemoryVehicleStore:
    return InMemoryVehicleStore()


@pytest.fixture
def queue() -> InMemoryStageQueue:
    return InMemoryStageQueue()


@pytest.fixture
def make_chat_model():
    """Build a mock chat model whose ``ainvoke`` answers with the given texts in order."""
    def _make(*responses):
        model = MagicMock()
        model.ainvoke = AsyncMock(side_effect=[
            response if isinstance(response, BaseException) else AIMessage(content=response)
            for response in responses
        ])
        return model
    return _make


@pytest.fixture
def orchestrator(store, queue, offline_config) -> PipelineOrchestrator:
    """Offline orchestrator over in-memory store and queue."""
    return PipelineOrchestrator(store, queue, offline_config, today=lambda: TODAY)


@pytest.fixture
def vision_orchestrator(store, queue, vision_config, make_chat_model):
    """Orchestrator with a mock vision model; call with the vision answers to replay."""
    def _build(*vision_answers, advisor_model=None):
        recognizer = VisionPlateRecognizer(vision_config, model=make_chat_model(*vision_answers))
        if advisor_model is None:
            advisor_model = MagicMock()
            advisor_model.ainvoke = AsyncMock(side_effect=RuntimeError("generation unavailable"))
        advisor = PurchaseAdvisorySynthesizer(vision_config, model=advisor_model)
        return PipelineOrchestrator(
            store,
            queue,
            vision_config,
            recognizer=recognizer,
            register_client=RegisterLookupClient(vision_config),
            history_client=MotHistoryClient(vision_config),
            advisor=advisor,
            today=lambda: TODAY,
        )
    return _build


@pytest.fixture
def freeze_time_fixture():
    """Fixture for freezing time in tests."""
    with freeze_time("2026-03-15 12:00:00") as frozen_time:
        yield frozen_time


@pytest.fixture(scope="function")
def reset_environment(monkeypatch):
    """Reset environment variables for each test."""
    original_env = os.environ.copy()
    yield
    os.environ.clear()
    os.environ.update(original_env)
