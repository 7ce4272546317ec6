"""IBM watsonx Granite client for soil narrative generation."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

import httpx

from ..config import Settings
from ..schemas.soil import SoilNarrative, SoilObservation
from .narrative_parsing import NarrativeParseError, parse_narrative
from .token_cache import AuthFailure, TokenCache

logger = logging.getLogger(__name__)

MAX_NEW_TOKENS = 4000
MODERATION_THRESHOLD = 0.5

PROMPT_PREAMBLE = """
You are an expert soil scientist and storyteller, specialized in agricultural science, gardening, and plant biology. Your task is to analyze soil data and create an engaging narrative about what this soil reveals, along with practical recommendations.

INSTRUCTIONS:
1. Generate a personalized 'soil story' (300-400 words) that explains what this soil data reveals about the soil's history, current state, and potential. Make it educational but engaging, like the soil is telling its own story.

2. Create a soil health assessment with:
   - A numerical score (0-100)
   - A category label (excellent, good, fair, poor, or very poor)

3. Identify 0-3 potential issues with this soil based on its properties:
   - Each issue should have a description and severity (high, medium, or low)

4. Provide 2-4 practical recommendations for improving or maintaining this soil:
   - Each recommendation should have a clear action and additional details

5. Suggest 4-6 plants that would thrive in this soil based on its properties.

Format your response as a single JSON object with the keys "story", "soil_health" (with "score", "category", "max_score"), "issues" (each with "description", "severity"), "recommendations" (each with "action", "details") and "suitable_plants". Respond with JSON only.

SOIL ANALYSIS GUIDELINES:
- pH Interpretation:
  - Very Acidic (0-5.5): Challenging for most plants except acid-lovers like blueberries
  - Slightly Acidic (5.5-6.5): Ideal for many fruits, vegetables, and flowers
  - Neutral (6.5-7.5): Good for most garden plants and vegetables
  - Alkaline (7.5+): Better for herbs and certain ornamentals, challenging for acid-loving plants

- Moisture Interpretation:
  - Very Dry (0-20%): Drought conditions, limited for most plants except succulents
  - Dry (20-40%): Requires regular watering for most plants
  - Moderate (40-60%): Ideal moisture for most garden plants
  - Moist (60-80%): Good for moisture-loving plants but potential drainage issues
  - Wet (80-100%): Suitable only for bog plants, likely drainage problems

Consider the interaction between pH and moisture in your analysis, as they affect nutrient availability and plant health together.
""".strip()

EXAMPLE_INPUT = {
    "pH": "6.5",
    "moisture": "45",
    "imageAnalysis": "dark brown color with visible organic matter",
}

EXAMPLE_OUTPUT = {
    "story": (
        "Your soil tells a story of balance and potential. With a pH of 6.5, it sits "
        "in the sweet spot that many plants prefer, slightly acidic but close to "
        "neutral. The moisture level of 45% indicates a well-balanced water content, "
        "neither too dry nor overly saturated. This soil has likely developed over "
        "decades, gradually accumulating minerals and organic matter..."
    ),
    "soil_health": {"score": 78, "category": "good", "max_score": 100},
    "issues": [
        {
            "description": "Slightly low in nitrogen which may affect leaf growth of heavy feeding plants",
            "severity": "medium",
        },
        {
            "description": "Could benefit from additional organic matter to improve structure",
            "severity": "low",
        },
    ],
    "recommendations": [
        {
            "action": "Add compost",
            "details": "Mix in 2-3 inches of compost to increase organic matter and improve soil structure",
        },
        {
            "action": "Consider nitrogen-fixing cover crops",
            "details": "Plants like clover or beans can help naturally increase nitrogen levels",
        },
    ],
    "suitable_plants": ["tomatoes", "peppers", "marigolds", "zinnias", "cosmos", "lavender"],
}


class InferenceFailure(RuntimeError):
    """Raised when a narrative cannot be produced.

    ``reason`` is a short machine-readable tag: ``auth``, ``unparseable``,
    ``timeout``, ``network``, ``empty``, ``malformed`` or ``http_<status>``.
    """

    def __init__(self, reason: str, detail: Optional[str] = None):
        super().__init__(detail or reason)
        self.reason = reason
        self.detail = detail


class _Unauthorized(Exception):
    """Provider answered 401; handled by the single refresh-and-retry path."""


def build_prompt(observation: SoilObservation) -> str:
    """Embed the observation in the fixed few-shot prompt."""

    soil_input: dict[str, str] = {
        "pH": observation.format_value("acidity"),
        "moisture": observation.format_value("moisture"),
    }
    if observation.image_descriptor:
        soil_input["imageAnalysis"] = observation.image_descriptor

    lines = [
        PROMPT_PREAMBLE,
        "",
        "SOIL DATA:",
        f"- pH Level: {soil_input['pH']}",
        f"- Moisture Content: {soil_input['moisture']}%",
    ]
    if observation.image_descriptor:
        lines.append(
            f"- The soil image shows {observation.image_descriptor}. This visual "
            "evidence supports the findings from the pH and moisture data."
        )
    lines += [
        "",
        f"Input: {json.dumps(EXAMPLE_INPUT, indent=2)}",
        f"Output: {json.dumps(EXAMPLE_OUTPUT, indent=2, ensure_ascii=False)}",
        "",
        f"Input: {json.dumps(soil_input, indent=2, ensure_ascii=False)}",
        "Output:",
    ]
    return "\n".join(lines)


class GraniteClient:
    """Generate soil narratives with watsonx text generation."""

    def __init__(
        self,
        settings: Settings,
        token_cache: TokenCache,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._settings = settings
        self._tokens = token_cache
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.inference_timeout, connect=5.0)
        )

    @property
    def _url(self) -> str:
        return str(self._settings.ibm_api_url)

    def build_payload(self, observation: SoilObservation) -> dict[str, Any]:
        moderation = {
            "input": {"enabled": True, "threshold": MODERATION_THRESHOLD},
            "output": {"enabled": True, "threshold": MODERATION_THRESHOLD},
        }
        return {
            "input": build_prompt(observation),
            "parameters": {
                "decoding_method": "greedy",
                "max_new_tokens": MAX_NEW_TOKENS,
                "min_new_tokens": 0,
                "stop_sequences": [],
                "repetition_penalty": 1,
            },
            "model_id": self._settings.ibm_model_id,
            "project_id": self._settings.ibm_project_id,
            "moderations": {"hap": moderation, "pii": dict(moderation)},
        }

    async def generate_narrative(self, observation: SoilObservation) -> SoilNarrative:
        logger.info(
            "Generating soil story for pH: %s, moisture: %s",
            observation.format_value("acidity"),
            observation.format_value("moisture"),
        )
        try:
            return await asyncio.wait_for(
                self._generate(observation),
                timeout=self._settings.inference_deadline,
            )
        except asyncio.TimeoutError as exc:
            logger.error(
                "Narrative generation exceeded %.0fs deadline",
                self._settings.inference_deadline,
            )
            raise InferenceFailure("timeout", "narrative generation timed out") from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def _generate(self, observation: SoilObservation) -> SoilNarrative:
        payload = self.build_payload(observation)
        try:
            text = await self._request_text(payload)
        except _Unauthorized:
            logger.info("Got 401 Unauthorized, refreshing token and retrying")
            try:
                await self._tokens.force_refresh()
            except AuthFailure as exc:
                raise InferenceFailure("auth", exc.reason) from exc
            try:
                text = await self._request_text(payload)
            except _Unauthorized as exc:
                logger.error("Provider rejected the refreshed token")
                raise InferenceFailure("auth", "provider rejected refreshed token") from exc

        try:
            parsed = parse_narrative(text)
        except NarrativeParseError as exc:
            logger.error("Could not extract valid JSON from the generated text")
            logger.debug("Full generated text: %s", text)
            raise InferenceFailure("unparseable", "Failed to parse the generated soil story") from exc
        return parsed.narrative

    async def _request_text(self, payload: dict[str, Any]) -> str:
        try:
            credential = await self._tokens.get_token()
        except AuthFailure as exc:
            raise InferenceFailure("auth", exc.reason) from exc

        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Authorization": f"Bearer {credential.token}",
        }

        logger.info("Sending request to IBM Granite API")
        try:
            response = await self._http.post(
                self._url,
                params={"version": self._settings.ibm_api_version},
                headers=headers,
                json=payload,
            )
        except httpx.TimeoutException as exc:
            raise InferenceFailure("timeout", f"IBM Granite request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise InferenceFailure("network", f"Network error contacting IBM Granite: {exc}") from exc

        logger.debug("IBM API response status: %s", response.status_code)
        if response.status_code == 401:
            raise _Unauthorized()
        if response.status_code >= 400:
            raise InferenceFailure(
                f"http_{response.status_code}",
                f"IBM Granite returned {response.status_code}: {response.text[:200]}",
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise InferenceFailure("malformed", "IBM Granite returned invalid JSON") from exc

        results = body.get("results") if isinstance(body, dict) else None
        if not isinstance(results, list) or not results or not isinstance(results[0], dict):
            raise InferenceFailure("empty", "Invalid or empty response structure from IBM API")

        generated = results[0].get("generated_text")
        if not isinstance(generated, str) or not generated.strip():
            raise InferenceFailure("empty", "Empty response from IBM Granite API")

        logger.debug("Generated text first 100 chars: %s", generated[:100])
        return generated


__all__ = ["GraniteClient", "InferenceFailure", "build_prompt"]
