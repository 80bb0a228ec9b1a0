"""Number plate recognition from listing photos using a vision chat model."""

import asyncio
import re
from typing import Iterable, Optional

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage
from pydantic import BaseModel, Field

from motorwise.services.llm_client import get_vision_model, message_text
from motorwise.utils.config import PipelineConfig
from motorwise.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

PLATE_PROMPT = (
    "Look at this car image and tell me the license plate number. "
    "If there is no visible license plate, say 'No plate visible'. "
    "If the image doesn't show a car, say 'Not a car image'. "
    "If you can see a partial plate but it's not fully readable, share what you can see "
    "followed by '?' for missing characters. "
    "Format your response exactly like: 'License plate: AB12 CDE' or 'License plate: Not visible' "
    "or 'License plate: AB1? C?E'"
)

NEGATIVE_SENTINELS = ("no plate visible", "not visible", "not a car image")

# At most two space-separated groups, e.g. "AB12 CDE", "A123 BCD", "AB1? C?E"
PLATE_PATTERN = re.compile(
    r"license plate:?\s*([A-Z0-9?]{1,8})(?:[ \t]+([A-Z0-9?]{1,4}))?(?![A-Z0-9?])",
    re.IGNORECASE,
)

MIN_PLATE_CHARS = 2
MAX_PLATE_CHARS = 8

FULL_PLATE_CONFIDENCE = 0.9
PARTIAL_PLATE_CONFIDENCE = 0.5


class PlateReading(BaseModel):
    """A plate read from one listing image."""
    registration: str = Field(..., description="Plate text as read, '?' marks unreadable characters")
    confidence: float = Field(..., ge=0.0, le=1.0)
    image_url: str = Field(..., description="Image the plate was read from")

    @property
    def is_partial(self) -> bool:
        return "?" in self.registration


def parse_plate_response(text: Optional[str]) -> tuple[Optional[str], float]:
    """Parse a vision response into (plate, confidence).

    Sentinels and unparseable text give (None, 0.0). A plate containing
    '?' is partial and scores 0.5; a clean plate scores 0.9.
    """
    if not text:
        return None, 0.0

    lowered = text.lower()
    if any(sentinel in lowered for sentinel in NEGATIVE_SENTINELS):
        return None, 0.0

    match = PLATE_PATTERN.search(text)
    if not match:
        return None, 0.0

    first = match.group(1).upper()
    second = (match.group(2) or "").upper()
    if len(first) + len(second) > MAX_PLATE_CHARS:
        # "AB12CDE The car..." picked up a word
        second = ""
    plate = f"{first} {second}".strip()

    compact = plate.replace(" ", "")
    # Every UK format carries a digit; prose like "unclear" does not
    if len(compact) < MIN_PLATE_CHARS or not any(ch.isdigit() or ch == "?" for ch in compact):
        return None, 0.0

    if "?" in plate:
        return plate, PARTIAL_PLATE_CONFIDENCE
    return plate, FULL_PLATE_CONFIDENCE


class VisionPlateRecognizer:
    """Reads a number plate from a listing's photos, in listing order.

    Stops at the first image that yields a plate. A failing image is logged
    and skipped; ``recognize`` itself never raises.
    """

    def __init__(self, config: PipelineConfig, model: Optional[BaseChatModel] = None):
        self.config = config
        self._model = model

    @property
    def enabled(self) -> bool:
        return self.config.vision_enabled

    def _get_model(self) -> BaseChatModel:
        if self._model is None:
            self._model = get_vision_model(self.config)
        return self._model

    async def read_image(self, image_url: str) -> str:
        """Ask the vision model about one image and return its raw answer."""
        message = HumanMessage(content=[
            {"type": "text", "text": PLATE_PROMPT},
            {"type": "image_url", "image_url": {"url": image_url}},
        ])
        response = await asyncio.wait_for(
            self._get_model().ainvoke([message]),
            timeout=self.config.vision_timeout_seconds,
        )
        return message_text(response)

    async def recognize(self, image_urls: Iterable[str]) -> Optional[PlateReading]:
        """Return the first plate found across ``image_urls``, or None."""
        if not self.enabled:
            logger.info("Vision plate recognition disabled, no credential configured")
            return None

        for index, image_url in enumerate(image_urls):
            if not image_url or not image_url.strip():
                continue
            try:
                answer = await self.read_image(image_url)
            except Exception as e:
                logger.warning(
                    "Plate recognition failed for image",
                    image_index=index,
                    image_url=image_url,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            plate, confidence = parse_plate_response(answer)
            if plate:
                logger.info(
                    "Plate recognised",
                    image_index=index,
                    registration=plate,
                    confidence=confidence,
                )
                return PlateReading(registration=plate, confidence=confidence, image_url=image_url)

            logger.debug("No plate in image", image_index=index)

        return None
