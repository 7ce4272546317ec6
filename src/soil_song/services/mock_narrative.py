"""Heuristic soil narratives for running without watsonx credentials."""

from __future__ import annotations

import logging

from ..schemas.soil import (
    HealthScore,
    Recommendation,
    SoilIssue,
    SoilNarrative,
    SoilObservation,
)

logger = logging.getLogger(__name__)

MAX_ISSUES = 3
MAX_RECOMMENDATIONS = 4
MAX_PLANTS = 6


def _acidity_points(ph: float) -> int:
    if 6.0 <= ph <= 7.5:
        return 50
    if 5.5 <= ph < 6.0 or 7.5 < ph <= 8.0:
        return 40
    if 5.0 <= ph < 5.5 or 8.0 < ph <= 8.5:
        return 30
    return 20


def _moisture_points(moisture: float) -> int:
    if 40 <= moisture <= 60:
        return 50
    if 30 <= moisture < 40 or 60 < moisture <= 70:
        return 40
    if 20 <= moisture < 30 or 70 < moisture <= 80:
        return 30
    return 20


def score_soil(ph: float, moisture: float) -> HealthScore:
    score = _acidity_points(ph) + _moisture_points(moisture)
    if score >= 90:
        category = "excellent"
    elif score >= 70:
        category = "good"
    elif score >= 50:
        category = "fair"
    elif score >= 30:
        category = "poor"
    else:
        category = "very poor"
    return HealthScore(value=score, label=category, max=100)


def _issues(ph: float, moisture: float) -> list[SoilIssue]:
    issues: list[SoilIssue] = []
    if ph < 6.0:
        issues.append(
            SoilIssue(
                description="Acidic soil may limit nutrient availability, particularly phosphorus, calcium, and magnesium",
                severity="high" if ph < 5.0 else "medium",
            )
        )
    if ph > 7.5:
        issues.append(
            SoilIssue(
                description="Alkaline soil may cause deficiencies of micronutrients like iron, manganese, and zinc",
                severity="high" if ph > 8.0 else "medium",
            )
        )
    if moisture < 30:
        issues.append(
            SoilIssue(
                description="Soil is too dry, which will stress most plants and reduce microbial activity",
                severity="high" if moisture < 20 else "medium",
            )
        )
    if moisture > 70:
        issues.append(
            SoilIssue(
                description="Soil is too wet, which may lead to root rot and anaerobic conditions",
                severity="high" if moisture > 80 else "medium",
            )
        )
    return issues[:MAX_ISSUES]


def _recommendations(ph: float, moisture: float) -> list[Recommendation]:
    recommendations: list[Recommendation] = []
    if ph < 6.0:
        recommendations.append(
            Recommendation(
                action="Add garden lime",
                details="Apply agricultural lime to raise soil pH. Typically 50g per square meter will raise pH by about 0.5 units.",
            )
        )
    if ph > 7.5:
        recommendations.append(
            Recommendation(
                action="Add sulfur or acidic organic matter",
                details="Add elemental sulfur or acidic organic materials like pine needles and oak leaves to lower soil pH gradually.",
            )
        )
    if moisture < 30:
        recommendations.append(
            Recommendation(
                action="Improve water retention",
                details="Add organic matter like compost to improve water retention and apply mulch to reduce evaporation.",
            )
        )
    if moisture > 70:
        recommendations.append(
            Recommendation(
                action="Improve drainage",
                details="Add coarse sand or perlite to improve drainage. Consider raised beds for severe cases.",
            )
        )
    recommendations.append(
        Recommendation(
            action="Add compost regularly",
            details="Work in 1-2 inches of compost annually to improve soil structure, nutrient content, and microbial activity.",
        )
    )
    return recommendations[:MAX_RECOMMENDATIONS]


def _plants(ph: float, moisture: float) -> list[str]:
    plants: list[str] = []
    if ph < 6.0:
        plants += ["blueberries", "azaleas", "rhododendrons", "camellias"]
    elif ph <= 7.0:
        plants += ["tomatoes", "peppers", "beans", "cucumbers", "strawberries"]
    else:
        plants += ["lavender", "thyme", "rosemary", "clematis"]

    if moisture < 30:
        plants += ["succulents", "lavender", "yarrow", "sage"]
    elif moisture <= 60:
        plants += ["zinnias", "marigolds", "cosmos", "sunflowers"]
    else:
        plants += ["iris", "ferns", "hostas", "astilbe"]

    return list(dict.fromkeys(plants))[:MAX_PLANTS]


def _story(observation: SoilObservation, health: HealthScore) -> str:
    ph = observation.acidity
    moisture = observation.moisture
    parts = [
        f"Your soil has a story to tell, and it's one of {health.label} potential. "
        f"With a pH of {observation.format_value('acidity')}, "
    ]
    if ph < 6.0:
        parts.append(
            "your soil is on the acidic side. This acidic nature was likely developed over time "
            "as organic matter decomposed and released acids into the soil. "
        )
    elif ph > 7.5:
        parts.append(
            "your soil leans toward alkalinity. This often indicates the presence of limestone "
            "or calcium-rich parent material in your region's geology. "
        )
    else:
        parts.append(
            "your soil has a nearly neutral pH, providing an excellent balance for nutrient "
            "availability. This balanced pH suggests a history of good organic matter management. "
        )

    parts.append(f"The moisture level of {observation.format_value('moisture')}% ")
    if moisture < 30:
        parts.append(
            "indicates a relatively dry soil environment. This soil likely drains quickly, which "
            "can be beneficial for some plants but challenging for others. "
        )
    elif moisture > 70:
        parts.append(
            "reveals a soil that retains significant moisture. This suggests clay content or "
            "good organic matter, though it may pose drainage challenges. "
        )
    else:
        parts.append(
            "shows a well-balanced water content, neither too dry nor overly saturated. This "
            "moisture level supports diverse microbial life and gives plant roots room to breathe. "
        )

    parts.append(
        "Soil is not just dirt. It's a living ecosystem with billions of microorganisms working together. "
    )
    if health.value >= 70:
        parts.append(
            "Your soil appears to have a healthy ecosystem supporting these microorganisms, "
            "creating a welcoming environment for plants. "
        )
    else:
        parts.append(
            "Your soil ecosystem may be facing some challenges that affect how nutrients are "
            "cycled and made available to plants. Thoughtful amendments can restore the balance. "
        )

    if observation.image_descriptor:
        parts.append(
            f"The visual examination of your soil sample reveals {observation.image_descriptor}, "
            "which aligns with the measured pH and moisture values. "
        )

    parts.append(
        "With proper care and attention to its specific needs, your soil can become even more "
        "vibrant and productive, supporting a wide range of plant life for years to come."
    )
    return "".join(parts)


class MockNarrativeGenerator:
    """Drop-in replacement for the Granite client that never touches the network."""

    async def generate_narrative(self, observation: SoilObservation) -> SoilNarrative:
        logger.info(
            "Generating mock soil story for pH: %s, moisture: %s",
            observation.format_value("acidity"),
            observation.format_value("moisture"),
        )
        health = score_soil(observation.acidity, observation.moisture)
        return SoilNarrative(
            story_text=_story(observation, health),
            health_score=health,
            issues=tuple(_issues(observation.acidity, observation.moisture)),
            recommendations=tuple(_recommendations(observation.acidity, observation.moisture)),
            suitable_plants=tuple(_plants(observation.acidity, observation.moisture)),
        )

    async def aclose(self) -> None:
        return None


__all__ = ["MockNarrativeGenerator", "score_soil"]
