"""Chat model factory for vision and text generation."""

from langchain_anthropic import ChatAnthropic
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_openai import ChatOpenAI

from motorwise.utils.config import PipelineConfig
from motorwise.utils.errors import ConfigurationError
from motorwise.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

VISION_MAX_TOKENS = 300
TEXT_MAX_TOKENS = 500
TEXT_TEMPERATURE = 0.7
ANTHROPIC_DEFAULT_MODEL = "claude-sonnet-4-20250514"


def get_vision_model(config: PipelineConfig) -> BaseChatModel:
    """Vision-capable chat model. Plate reading always goes through OpenAI."""
    if not config.openai_api_key:
        raise ConfigurationError("OPENAI_API_KEY not set")

    logger.debug("Getting vision model", llm_model=config.vision_model)
    return ChatOpenAI(
        model=config.vision_model,
        api_key=config.openai_api_key,
        max_tokens=VISION_MAX_TOKENS,
        timeout=config.vision_timeout_seconds,
        max_retries=0,
    )


def get_llm_model(config: PipelineConfig) -> BaseChatModel:
    """Get the configured text-generation model."""
    provider = config.llm_provider
    logger.debug("Getting LLM model", llm_provider=provider, llm_model=config.summary_model)

    if provider == "anthropic":
        if not config.anthropic_api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY not set")
        model_name = config.summary_model
        if not model_name.startswith("claude"):
            model_name = ANTHROPIC_DEFAULT_MODEL
        return ChatAnthropic(
            model=model_name,
            api_key=config.anthropic_api_key,
            temperature=TEXT_TEMPERATURE,
            max_tokens=TEXT_MAX_TOKENS,
            timeout=config.llm_timeout_seconds,
            max_retries=0,
        )
    elif provider == "openai":
        if not config.openai_api_key:
            raise ConfigurationError("OPENAI_API_KEY not set")
        return ChatOpenAI(
            model=config.summary_model,
            api_key=config.openai_api_key,
            temperature=TEXT_TEMPERATURE,
            max_tokens=TEXT_MAX_TOKENS,
            timeout=config.llm_timeout_seconds,
            max_retries=0,
        )
    else:
        raise ConfigurationError(f"Unsupported LLM provider: {provider}")


def message_text(response) -> str:
    """Plain text of a chat model response (string or content-block list)."""
    content = getattr(response, "content", response)
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts).strip()
    return str(content or "").strip()
