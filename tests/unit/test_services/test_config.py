"""Tests for pipeline configuration."""

import pytest
from motorwise.utils.config import DEFAULT_REGISTER_API_URL, PipelineConfig


@pytest.mark.unit
def test_defaults_are_fully_offline():
    config = PipelineConfig()

    assert config.environment == "development"
    assert not config.vision_enabled
    assert not config.text_generation_enabled
    assert config.register_offline
    assert config.mot_history_offline
    assert config.register_api_url == DEFAULT_REGISTER_API_URL


@pytest.mark.unit
def test_production_with_credentials_is_live(live_config):
    assert live_config.is_production
    assert live_config.vision_enabled
    assert not live_config.register_offline
    assert not live_config.mot_history_offline


@pytest.mark.unit
def test_synthetic_data_outside_production():
    config = PipelineConfig(environment="staging", register_api_key="k", mot_history_api_key="k")

    assert config.register_offline
    assert config.mot_history_offline


@pytest.mark.unit
def test_synthetic_data_override():
    forced_live = PipelineConfig(environment="development", register_api_key="k", use_synthetic_data=False)
    forced_offline = PipelineConfig(environment="production", register_api_key="k", use_synthetic_data=True)
    no_key = PipelineConfig(environment="production", use_synthetic_data=False)

    assert not forced_live.register_offline
    assert forced_offline.register_offline
    assert no_key.register_offline


@pytest.mark.unit
def test_text_generation_follows_provider():
    assert PipelineConfig(llm_provider="anthropic", anthropic_api_key="k").text_generation_enabled
    assert not PipelineConfig(llm_provider="anthropic", openai_api_key="k").text_generation_enabled
    assert not PipelineConfig(llm_provider="anthropic", openai_api_key=None).vision_enabled


@pytest.mark.unit
def test_from_env(monkeypatch, reset_environment):
    monkeypatch.setenv("ENVIRONMENT", " Production ")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-key")
    monkeypatch.setenv("DVLA_API_KEY", "dvla-key")
    monkeypatch.setenv("USE_SYNTHETIC_DATA", "false")
    monkeypatch.setenv("LISTING_WEBHOOK_SECRET", "   ")
    monkeypatch.setenv("PIPELINE_BATCH_SIZE", "25")
    monkeypatch.delenv("MOT_HISTORY_API_KEY", raising=False)

    config = PipelineConfig.from_env()

    assert config.environment == "production"
    assert config.vision_enabled
    assert config.use_synthetic_data is False
    assert not config.register_offline
    assert config.mot_history_offline
    assert config.webhook_secret is None
    assert config.worker_batch_size == 25
