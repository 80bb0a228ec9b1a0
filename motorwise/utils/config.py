"""Pipeline configuration.

Built once from the environment and passed explicitly into every client,
so no client has to consult process-wide state on its own.
"""

import os
from typing import Literal, Optional
from pydantic import BaseModel, Field


DEFAULT_REGISTER_API_URL = "https://driver-vehicle-licensing.api.gov.uk/vehicle-enquiry/v1/vehicles"
DEFAULT_MOT_HISTORY_API_URL = "https://beta.check-mot.service.gov.uk/trade/vehicles/mot-tests"


def _env_flag(name: str) -> Optional[bool]:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    return raw.strip().lower() in ("1", "true", "yes", "on")


class PipelineConfig(BaseModel):
    """Settings for the enrichment pipeline and its external collaborators."""
    environment: str = Field(default="development", description="development, test, staging or production")

    # Generation / vision
    llm_provider: Literal["openai", "anthropic"] = Field(default="openai", description="Text generation provider")
    openai_api_key: Optional[str] = Field(None, description="Credential for vision and OpenAI text generation")
    anthropic_api_key: Optional[str] = Field(None, description="Credential for Anthropic text generation")
    vision_model: str = Field(default="gpt-4o")
    summary_model: str = Field(default="gpt-4o-mini")
    vision_timeout_seconds: float = Field(default=30.0, gt=0)
    llm_timeout_seconds: float = Field(default=30.0, gt=0)
    summary_max_chars: int = Field(default=1200, ge=100)

    # Authoritative services
    register_api_key: Optional[str] = Field(None, description="Vehicle register (DVLA) API key")
    register_api_url: str = Field(default=DEFAULT_REGISTER_API_URL)
    register_timeout_seconds: float = Field(default=10.0, gt=0)
    mot_history_api_key: Optional[str] = Field(None, description="MOT history API key")
    mot_history_api_url: str = Field(default=DEFAULT_MOT_HISTORY_API_URL)
    mot_history_timeout_seconds: float = Field(default=10.0, gt=0)
    use_synthetic_data: Optional[bool] = Field(
        None,
        description="Force synthetic register/history data on or off; derived from environment when unset"
    )

    # Worker / trigger
    worker_batch_size: int = Field(default=10, ge=1)
    webhook_secret: Optional[str] = Field(None, description="Shared secret for listing webhooks")

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Load configuration from environment variables."""
        return cls(
            environment=os.environ.get("ENVIRONMENT", "development").strip().lower(),
            llm_provider=os.environ.get("LLM_PROVIDER", "openai").strip().lower(),
            openai_api_key=os.environ.get("OPENAI_API_KEY") or None,
            anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY") or None,
            vision_model=os.environ.get("VISION_MODEL", "gpt-4o"),
            summary_model=os.environ.get("LLM_MODEL", "gpt-4o-mini"),
            vision_timeout_seconds=float(os.environ.get("VISION_TIMEOUT_SECONDS", "30")),
            llm_timeout_seconds=float(os.environ.get("LLM_TIMEOUT_SECONDS", "30")),
            summary_max_chars=int(os.environ.get("SUMMARY_MAX_CHARS", "1200")),
            register_api_key=os.environ.get("DVLA_API_KEY") or None,
            register_api_url=os.environ.get("DVLA_API_URL", DEFAULT_REGISTER_API_URL),
            register_timeout_seconds=float(os.environ.get("DVLA_TIMEOUT_SECONDS", "10")),
            mot_history_api_key=os.environ.get("MOT_HISTORY_API_KEY") or None,
            mot_history_api_url=os.environ.get("MOT_HISTORY_API_URL", DEFAULT_MOT_HISTORY_API_URL),
            mot_history_timeout_seconds=float(os.environ.get("MOT_HISTORY_TIMEOUT_SECONDS", "10")),
            use_synthetic_data=_env_flag("USE_SYNTHETIC_DATA"),
            worker_batch_size=int(os.environ.get("PIPELINE_BATCH_SIZE", "10")),
            webhook_secret=(os.environ.get("LISTING_WEBHOOK_SECRET") or "").strip() or None,
        )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def vision_enabled(self) -> bool:
        """Vision plate recognition only runs with a real credential."""
        return bool(self.openai_api_key)

    @property
    def text_generation_enabled(self) -> bool:
        if self.llm_provider == "anthropic":
            return bool(self.anthropic_api_key)
        return bool(self.openai_api_key)

    def _offline(self, api_key: Optional[str]) -> bool:
        # Without a credential there is nothing to call.
        if not api_key:
            return True
        if self.use_synthetic_data is not None:
            return self.use_synthetic_data
        return not self.is_production

    @property
    def register_offline(self) -> bool:
        return self._offline(self.register_api_key)

    @property
    def mot_history_offline(self) -> bool:
        return self._offline(self.mot_history_api_key)
