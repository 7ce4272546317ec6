import asyncio
import json

import httpx
import pytest

from soil_song.schemas.soil import SoilObservation
from soil_song.services.granite import GraniteClient, InferenceFailure, build_prompt
from soil_song.services.token_cache import TokenCache

NARRATIVE = {
    "story": "A calm loam with a long memory.",
    "soil_health": {"score": 82, "category": "good", "max_score": 100},
    "issues": [],
    "recommendations": [{"action": "Mulch", "details": "Keep moisture steady"}],
    "suitable_plants": ["beans", "squash"],
}


def generation_response(text: str) -> httpx.Response:
    return httpx.Response(200, json={"results": [{"generated_text": text}]})


class FakeProvider:
    """Route IAM and generation calls through one MockTransport."""

    def __init__(self, generation_responses):
        self.generation = list(generation_responses)
        self.token_calls = 0
        self.generation_requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "iam.example.com":
            self.token_calls += 1
            return httpx.Response(
                200,
                json={"access_token": f"tok-{self.token_calls}", "expires_in": 3600},
            )
        self.generation_requests.append(request)
        response = self.generation.pop(0)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return await response(request)
        return response


def make_client(settings, provider: FakeProvider) -> GraniteClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(provider))
    tokens = TokenCache(
        api_key="test-key",
        token_url=str(settings.ibm_iam_url),
        http_client=http,
    )
    return GraniteClient(settings, tokens, http_client=http)


OBSERVATION = SoilObservation(acidity=6.5, moisture=45)


def test_prompt_embeds_observation_and_example():
    prompt = build_prompt(
        SoilObservation(acidity=6.5, moisture=45, image_descriptor="dark crumbly loam")
    )

    assert "- pH Level: 6.5" in prompt
    assert "- Moisture Content: 45%" in prompt
    assert "dark crumbly loam" in prompt
    assert '"story": "Your soil tells a story of balance and potential.' in prompt
    assert prompt.rstrip().endswith("Output:")


def test_payload_carries_model_and_moderation(settings):
    client = make_client(settings, FakeProvider([]))

    payload = client.build_payload(OBSERVATION)

    assert payload["model_id"] == "ibm/granite-13b-instruct-v2"
    assert payload["project_id"] == "project-123"
    assert payload["parameters"]["decoding_method"] == "greedy"
    assert payload["parameters"]["max_new_tokens"] == 4000
    assert payload["moderations"]["hap"]["input"] == {"enabled": True, "threshold": 0.5}
    assert payload["moderations"]["pii"]["output"]["enabled"] is True


@pytest.mark.asyncio
async def test_generate_narrative_direct_json(settings):
    provider = FakeProvider([generation_response(json.dumps(NARRATIVE))])
    client = make_client(settings, provider)

    narrative = await client.generate_narrative(OBSERVATION)

    assert narrative.story_text == "A calm loam with a long memory."
    assert narrative.health_score.value == 82
    request = provider.generation_requests[0]
    assert request.headers["Authorization"] == "Bearer tok-1"
    assert request.url.params["version"] == "2023-05-29"


@pytest.mark.asyncio
async def test_generate_narrative_extracts_embedded_json(settings):
    text = f"Sure! Here is your story:\n{json.dumps(NARRATIVE)}\n"
    client = make_client(settings, FakeProvider([generation_response(text)]))

    narrative = await client.generate_narrative(OBSERVATION)

    assert narrative.suitable_plants == ("beans", "squash")


@pytest.mark.asyncio
async def test_unparseable_output_fails(settings):
    client = make_client(settings, FakeProvider([generation_response("no json here")]))

    with pytest.raises(InferenceFailure) as excinfo:
        await client.generate_narrative(OBSERVATION)
    assert excinfo.value.reason == "unparseable"


@pytest.mark.asyncio
async def test_unauthorized_triggers_one_forced_refresh(settings):
    provider = FakeProvider(
        [httpx.Response(401), generation_response(json.dumps(NARRATIVE))]
    )
    client = make_client(settings, provider)

    narrative = await client.generate_narrative(OBSERVATION)

    assert narrative.health_score.label == "good"
    assert provider.token_calls == 2
    assert len(provider.generation_requests) == 2
    assert provider.generation_requests[1].headers["Authorization"] == "Bearer tok-2"


@pytest.mark.asyncio
async def test_second_unauthorized_fails_with_auth(settings):
    provider = FakeProvider([httpx.Response(401), httpx.Response(401)])
    client = make_client(settings, provider)

    with pytest.raises(InferenceFailure) as excinfo:
        await client.generate_narrative(OBSERVATION)

    assert excinfo.value.reason == "auth"
    assert provider.token_calls == 2
    assert len(provider.generation_requests) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("response", "reason"),
    [
        (httpx.Response(500, text="boom"), "http_500"),
        (httpx.Response(200, content=b"<html>"), "malformed"),
        (httpx.Response(200, json={"results": []}), "empty"),
        (generation_response("   "), "empty"),
    ],
)
async def test_provider_errors_map_to_reasons(settings, response, reason):
    client = make_client(settings, FakeProvider([response]))

    with pytest.raises(InferenceFailure) as excinfo:
        await client.generate_narrative(OBSERVATION)
    assert excinfo.value.reason == reason


@pytest.mark.asyncio
async def test_transport_timeout_maps_to_timeout(settings):
    provider = FakeProvider([httpx.ReadTimeout("slow")])
    client = make_client(settings, provider)

    with pytest.raises(InferenceFailure) as excinfo:
        await client.generate_narrative(OBSERVATION)
    assert excinfo.value.reason == "timeout"


@pytest.mark.asyncio
async def test_overall_deadline_maps_to_timeout(settings):
    async def stall(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(1)
        return generation_response(json.dumps(NARRATIVE))

    deadline_settings = settings.model_copy(update={"inference_deadline": 0.05})
    client = make_client(deadline_settings, FakeProvider([stall]))

    with pytest.raises(InferenceFailure) as excinfo:
        await client.generate_narrative(OBSERVATION)
    assert excinfo.value.reason == "timeout"


@pytest.mark.asyncio
async def test_missing_api_key_maps_to_auth(settings):
    http = httpx.AsyncClient(transport=httpx.MockTransport(FakeProvider([])))
    client = GraniteClient(
        settings,
        TokenCache(api_key=None, token_url=str(settings.ibm_iam_url), http_client=http),
        http_client=http,
    )

    with pytest.raises(InferenceFailure) as excinfo:
        await client.generate_narrative(OBSERVATION)
    assert excinfo.value.reason == "auth"
