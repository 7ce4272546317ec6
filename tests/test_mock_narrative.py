import pytest

from soil_song.schemas.soil import SoilObservation
from soil_song.services.mock_narrative import MockNarrativeGenerator, score_soil


@pytest.mark.parametrize(
    ("ph", "moisture", "score", "category"),
    [
        (6.5, 50, 100, "excellent"),
        (5.8, 35, 80, "good"),
        (5.2, 25, 60, "fair"),
        (4.0, 10, 40, "poor"),
        (9.0, 95, 40, "poor"),
        (8.2, 75, 60, "fair"),
    ],
)
def test_score_bands(ph, moisture, score, category):
    health = score_soil(ph, moisture)

    assert health.value == score
    assert health.label == category
    assert health.max == 100


@pytest.mark.asyncio
async def test_balanced_soil_narrative():
    narrative = await MockNarrativeGenerator().generate_narrative(
        SoilObservation(acidity=6.5, moisture=50)
    )

    assert "pH of 6.5" in narrative.story_text
    assert "50%" in narrative.story_text
    assert narrative.issues == ()
    assert [r.action for r in narrative.recommendations] == ["Add compost regularly"]
    assert narrative.suitable_plants[:2] == ("tomatoes", "peppers")
    assert len(narrative.suitable_plants) == 6


@pytest.mark.asyncio
async def test_acidic_dry_soil_flags_issues():
    narrative = await MockNarrativeGenerator().generate_narrative(
        SoilObservation(acidity=4.5, moisture=15)
    )

    assert [issue.severity for issue in narrative.issues] == ["high", "high"]
    assert narrative.recommendations[0].action == "Add garden lime"
    assert narrative.recommendations[-1].action == "Add compost regularly"
    assert "blueberries" in narrative.suitable_plants
    assert len(set(narrative.suitable_plants)) == len(narrative.suitable_plants)


@pytest.mark.asyncio
async def test_image_descriptor_mentioned():
    narrative = await MockNarrativeGenerator().generate_narrative(
        SoilObservation(acidity=7.0, moisture=45, image_descriptor="reddish clay")
    )

    assert "reddish clay" in narrative.story_text


@pytest.mark.asyncio
async def test_alkaline_wet_soil():
    narrative = await MockNarrativeGenerator().generate_narrative(
        SoilObservation(acidity=8.8, moisture=90)
    )

    assert len(narrative.issues) == 2
    assert len(narrative.recommendations) == 3
    assert "lavender" in narrative.suitable_plants
    assert "ferns" in narrative.suitable_plants
