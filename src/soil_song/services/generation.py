"""Sequence validation, narrative generation and speech synthesis for one request."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Protocol, Union

from ..schemas.soil import SoilNarrative, SoilObservation
from .granite import InferenceFailure
from .tts import AudioAsset, SynthesisFailure
from .uploads import ImageError, ImageStore

logger = logging.getLogger(__name__)

# Image analysis is not performed; stored photos are described generically.
IMAGE_DESCRIPTOR = "a soil sample with visible texture and coloration"

MISSING_PARAMETERS = "Missing required parameters: pH and moisture are required"
INVALID_ACIDITY = "Invalid pH value: must be a number between 0 and 14"
INVALID_MOISTURE = "Invalid moisture value: must be a percentage between 0 and 100"

Measurement = Union[float, int, str, None]


class ValidationFailure(ValueError):
    """Raised for bad input before any collaborator is called."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class NarrativeGenerator(Protocol):
    async def generate_narrative(self, observation: SoilObservation) -> SoilNarrative: ...


class Synthesizer(Protocol):
    async def synthesize(self, text: str) -> AudioAsset: ...


@dataclass(frozen=True)
class GenerationResult:
    narrative: SoilNarrative
    asset: AudioAsset


def _is_blank(value: Measurement) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _as_number(value: Measurement, message: str, low: float, high: float) -> float:
    if isinstance(value, bool):
        raise ValidationFailure(message)
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValidationFailure(message) from exc
    if math.isnan(number) or not low <= number <= high:
        raise ValidationFailure(message)
    return number


def build_observation(
    acidity: Measurement,
    moisture: Measurement,
    image_descriptor: Optional[str] = None,
) -> SoilObservation:
    """Coerce raw request values into a validated observation."""

    if _is_blank(acidity) or _is_blank(moisture):
        raise ValidationFailure(MISSING_PARAMETERS)
    return SoilObservation(
        acidity=_as_number(acidity, INVALID_ACIDITY, 0, 14),
        moisture=_as_number(moisture, INVALID_MOISTURE, 0, 100),
        image_descriptor=image_descriptor,
    )


class GenerationOrchestrator:
    """Run one story request: validate, generate the narrative, synthesize speech."""

    def __init__(
        self,
        generator: NarrativeGenerator,
        synthesizer: Synthesizer,
        image_store: Optional[ImageStore] = None,
    ) -> None:
        self._generator = generator
        self._synthesizer = synthesizer
        self._images = image_store

    async def handle_request(
        self,
        acidity: Measurement,
        moisture: Measurement,
        image_base64: Optional[str] = None,
    ) -> GenerationResult:
        observation = build_observation(acidity, moisture)

        if image_base64:
            if self._images is None:
                raise ValidationFailure("Image uploads are not enabled")
            logger.info("Processing base64 image")
            try:
                await self._images.save_base64(image_base64)
            except ImageError as exc:
                raise ValidationFailure(str(exc)) from exc
            observation = observation.model_copy(update={"image_descriptor": IMAGE_DESCRIPTOR})

        try:
            narrative = await self._generator.generate_narrative(observation)
        except InferenceFailure as exc:
            logger.error("Narrative generation failed (%s): %s", exc.reason, exc)
            raise

        try:
            asset = await self._synthesizer.synthesize(narrative.story_text)
        except SynthesisFailure as exc:
            logger.error("Speech synthesis failed: %s", exc.reason)
            raise

        return GenerationResult(narrative=narrative, asset=asset)


__all__ = [
    "GenerationOrchestrator",
    "GenerationResult",
    "IMAGE_DESCRIPTOR",
    "ValidationFailure",
    "build_observation",
]
