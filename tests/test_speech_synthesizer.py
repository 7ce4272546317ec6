import asyncio

import httpx
import pytest

from soil_song.services.tts import SpeechSynthesizer, SynthesisFailure

STORY = "Alpha beta gamma. Delta epsilon zeta. Eta theta iota."


def make_synthesizer(settings, handler, tmp_path):
    tuned = settings.model_copy(update={"tts_segment_max_chars": 20})
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SpeechSynthesizer(tuned, http_client=http, storage_dir=tmp_path / "audio")


@pytest.mark.asyncio
async def test_segments_assembled_in_index_order_despite_completion_order(settings, tmp_path):
    completed: list[int] = []
    requests: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        index = int(request.url.params["idx"])
        # Later segments answer first.
        await asyncio.sleep((3 - index) * 0.02)
        completed.append(index)
        return httpx.Response(200, content=f"<seg{index}>".encode())

    synthesizer = make_synthesizer(settings, handler, tmp_path)

    asset = await synthesizer.synthesize(STORY)

    assert completed == [2, 1, 0]
    assert asset.path.read_bytes() == b"<seg0><seg1><seg2>"
    assert asset.locator == f"/audio/{asset.path.name}"
    assert asset.path.name.startswith("soil_story_")
    assert asset.duration_millis == int(len(b"<seg0><seg1><seg2>") * 8 / 32)

    queries = sorted(requests, key=lambda r: int(r.url.params["idx"]))
    assert [r.url.params["q"] for r in queries] == [
        "Alpha beta gamma.",
        "Delta epsilon zeta.",
        "Eta theta iota.",
    ]
    assert {r.url.params["total"] for r in queries} == {"3"}
    assert {r.url.params["client"] for r in queries} == {"tw-ob"}
    assert {r.url.params["tl"] for r in queries} == {"en-US"}


@pytest.mark.asyncio
async def test_only_final_file_remains(settings, tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"mp3")

    synthesizer = make_synthesizer(settings, handler, tmp_path)

    asset = await synthesizer.synthesize(STORY)

    assert list((tmp_path / "audio").iterdir()) == [asset.path]


@pytest.mark.asyncio
async def test_failed_segment_fails_whole_call_and_cleans_up(settings, tmp_path):
    async def handler(request: httpx.Request) -> httpx.Response:
        index = int(request.url.params["idx"])
        if index == 1:
            return httpx.Response(503)
        await asyncio.sleep(0.05)
        return httpx.Response(200, content=b"audio")

    synthesizer = make_synthesizer(settings, handler, tmp_path)

    with pytest.raises(SynthesisFailure) as excinfo:
        await synthesizer.synthesize(STORY)

    assert excinfo.value.reason == "segment 2 failed"
    assert list((tmp_path / "audio").iterdir()) == []


@pytest.mark.asyncio
async def test_empty_segment_body_is_a_failure(settings, tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"")

    synthesizer = make_synthesizer(settings, handler, tmp_path)

    with pytest.raises(SynthesisFailure):
        await synthesizer.synthesize("Short story.")
    assert list((tmp_path / "audio").iterdir()) == []


@pytest.mark.asyncio
async def test_empty_text_fails_without_network(settings, tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no segment should be requested")

    synthesizer = make_synthesizer(settings, handler, tmp_path)

    with pytest.raises(SynthesisFailure) as excinfo:
        await synthesizer.synthesize("   ")
    assert excinfo.value.reason == "empty text"


@pytest.mark.asyncio
async def test_concurrency_is_bounded(settings, tmp_path):
    in_flight = 0
    peak = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return httpx.Response(200, content=b"x")

    tuned = settings.model_copy(
        update={"tts_segment_max_chars": 10, "tts_max_concurrency": 2}
    )
    synthesizer = SpeechSynthesizer(
        tuned,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        storage_dir=tmp_path / "audio",
    )

    await synthesizer.synthesize(" ".join(["soil"] * 40))

    assert peak <= 2


@pytest.mark.asyncio
async def test_malformed_url_is_reported_as_segment_failure(settings, tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.InvalidURL("Invalid non-printable ASCII character in URL")

    synthesizer = make_synthesizer(settings, handler, tmp_path)

    with pytest.raises(SynthesisFailure) as excinfo:
        await synthesizer.synthesize("Short story.")

    assert excinfo.value.reason == "segment 1 failed"
    assert list((tmp_path / "audio").iterdir()) == []
