"""Pydantic models for soil story requests, responses and narratives."""

from __future__ import annotations

from typing import Literal, Optional, Tuple, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

Severity = Literal["low", "medium", "high"]


class SoilObservation(BaseModel):
    """Validated soil measurements for one story request."""

    acidity: float = Field(ge=0, le=14, allow_inf_nan=False)
    moisture: float = Field(ge=0, le=100, allow_inf_nan=False)
    image_descriptor: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    def format_value(self, field: Literal["acidity", "moisture"]) -> str:
        """Render a measurement the way a person would type it ("6.5", "45")."""

        value = getattr(self, field)
        return f"{value:g}"


class HealthScore(BaseModel):
    value: float = Field(alias="score")
    label: str = Field(alias="category")
    max: float = Field(default=100, alias="max_score")

    model_config = ConfigDict(frozen=True, populate_by_name=True)


class SoilIssue(BaseModel):
    description: str
    severity: Severity

    model_config = ConfigDict(frozen=True)

    @field_validator("severity", mode="before")
    @classmethod
    def _normalize_severity(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class Recommendation(BaseModel):
    action: str
    details: str = ""

    model_config = ConfigDict(frozen=True)


class SoilNarrative(BaseModel):
    """Generated story plus structured analysis.

    Field aliases match the JSON shape the language model is asked to emit,
    so a parsed provider object validates directly into this model.
    """

    story_text: str = Field(alias="story", min_length=1)
    health_score: HealthScore = Field(alias="soil_health")
    issues: Tuple[SoilIssue, ...] = ()
    recommendations: Tuple[Recommendation, ...] = ()
    suitable_plants: Tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @field_validator("story_text")
    @classmethod
    def _strip_story(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("story must not be blank")
        return stripped

    @field_validator("suitable_plants")
    @classmethod
    def _dedupe_plants(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        seen: dict[str, None] = {}
        for plant in value:
            name = plant.strip()
            if name and name not in seen:
                seen[name] = None
        return tuple(seen)


class SoilStoryRequest(BaseModel):
    """Incoming request payload.

    Values are accepted loosely (numbers or numeric strings); range checks happen
    in the generation orchestrator so they surface as a 400 with a readable message.
    """

    acidity: Union[float, str, None] = Field(
        default=None, validation_alias=AliasChoices("acidity", "pH", "ph")
    )
    moisture: Union[float, str, None] = None
    image_base64: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("imageBase64", "base64Image", "image_base64"),
    )

    model_config = ConfigDict(populate_by_name=True)


class SoilAnalysis(BaseModel):
    soil_health: HealthScore
    issues: Tuple[SoilIssue, ...]
    recommendations: Tuple[Recommendation, ...]
    suitable_plants: Tuple[str, ...]


class SoilStoryResponse(BaseModel):
    storyText: str
    audioLocator: str
    audioDurationMillis: int
    analysis: SoilAnalysis

    @classmethod
    def from_result(
        cls, narrative: SoilNarrative, locator: str, duration_millis: int
    ) -> "SoilStoryResponse":
        return cls(
            storyText=narrative.story_text,
            audioLocator=locator,
            audioDurationMillis=duration_millis,
            analysis=SoilAnalysis(
                soil_health=narrative.health_score,
                issues=narrative.issues,
                recommendations=narrative.recommendations,
                suitable_plants=narrative.suitable_plants,
            ),
        )


class HealthStatus(BaseModel):
    status: str
    service: str
    mode: Literal["live", "mock"]


__all__ = [
    "HealthScore",
    "HealthStatus",
    "Recommendation",
    "Severity",
    "SoilAnalysis",
    "SoilIssue",
    "SoilNarrative",
    "SoilObservation",
    "SoilStoryRequest",
    "SoilStoryResponse",
]
