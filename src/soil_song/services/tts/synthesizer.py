"""
Speech Synthesizer for Soil Stories.

Turns an arbitrary-length narrative into one playable MP3:

    story text → TextSegmenter → segment fetches (concurrent) → ordered assembly

Segment fetches may finish in any order; every segment lands in its own temp
file keyed by its index, and assembly concatenates those files strictly in index
order. MP3 frames are self-delimiting, so byte concatenation gives a valid
stream. Temp files are always removed, and a failed segment fails the whole call.
"""

import asyncio
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
from uuid import uuid4

import httpx

from ...config import Settings
from ...utils import build_storage_name

from .text_segmenter import TextSegmenter

logger = logging.getLogger(__name__)

AUDIO_URL_PREFIX = "/audio"

# InvalidURL and StreamError are not HTTPError subclasses.
_REQUEST_ERRORS = (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError)


class SynthesisFailure(RuntimeError):
    """Raised when speech could not be produced for the whole text."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


@dataclass(frozen=True)
class AudioAsset:
    locator: str
    duration_millis: int
    path: Path


class SpeechSynthesizer:
    """
    Synthesize speech through a short-segment TTS endpoint.

    Holds no per-request state; one instance serves concurrent requests.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        storage_dir: Optional[Path] = None,
    ):
        self._base_url = str(settings.tts_base_url)
        self._language = settings.tts_language
        self._bitrate_kbps = settings.tts_bitrate_kbps
        self._max_concurrency = settings.tts_max_concurrency
        self._segmenter = TextSegmenter(
            max_chars=settings.tts_segment_max_chars,
            punctuation=settings.tts_split_punctuation,
        )
        self._storage_dir = Path(storage_dir or settings.audio_storage_path)
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.tts_timeout, connect=5.0)
        )

    @property
    def segmenter(self) -> TextSegmenter:
        return self._segmenter

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()
            logger.info("Closed TTS HTTP client")

    async def synthesize(self, text: str) -> AudioAsset:
        """Synthesize ``text`` and return the assembled asset."""
        segments = self._segmenter.split(text)
        if not segments:
            raise SynthesisFailure("empty text")

        logger.info("Split text into %d chunks for TTS processing", len(segments))
        self._storage_dir.mkdir(parents=True, exist_ok=True)

        batch = uuid4().hex
        chunk_paths = [
            self._storage_dir / f"chunk_{batch}_{index:03d}.mp3"
            for index in range(len(segments))
        ]
        output_path = self._storage_dir / build_storage_name("soil_story", ".mp3")
        semaphore = asyncio.Semaphore(self._max_concurrency)

        completed = False
        try:
            tasks = [
                asyncio.create_task(
                    self._fetch_segment(index, segment, len(segments), path, semaphore)
                )
                for index, (segment, path) in enumerate(zip(segments, chunk_paths))
            ]
            try:
                await asyncio.gather(*tasks)
            except BaseException:
                # Stop the remaining fetches before their files are cleaned up.
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

            total_bytes = await asyncio.to_thread(self._assemble, chunk_paths, output_path)
            completed = True
        except OSError as exc:
            logger.error("Error assembling audio file: %s", exc)
            raise SynthesisFailure("assembly failed") from exc
        finally:
            self._remove(chunk_paths)
            if not completed:
                output_path.unlink(missing_ok=True)

        duration_millis = int(total_bytes * 8 / self._bitrate_kbps)
        locator = f"{AUDIO_URL_PREFIX}/{output_path.name}"
        logger.info(
            "Generated audio file: %s (%d bytes, ~%d ms)", locator, total_bytes, duration_millis
        )
        return AudioAsset(locator=locator, duration_millis=duration_millis, path=output_path)

    async def _fetch_segment(
        self,
        index: int,
        segment: str,
        total: int,
        path: Path,
        semaphore: asyncio.Semaphore,
    ) -> None:
        params = {
            "ie": "UTF-8",
            "q": segment,
            "tl": self._language,
            "total": str(total),
            "idx": str(index),
            "textlen": str(len(segment)),
            "client": "tw-ob",
            "prev": "input",
            "ttsspeed": "1",
        }
        async with semaphore:
            try:
                response = await self._http.get(self._base_url, params=params)
                response.raise_for_status()
            except _REQUEST_ERRORS as exc:
                logger.error("TTS segment %d/%d failed: %s", index + 1, total, exc)
                raise SynthesisFailure(f"segment {index + 1} failed") from exc

        audio = response.content
        if not audio:
            logger.error("TTS segment %d/%d returned no audio", index + 1, total)
            raise SynthesisFailure(f"segment {index + 1} failed")

        try:
            await asyncio.to_thread(path.write_bytes, audio)
        except OSError as exc:
            logger.error("Could not write TTS segment %d to %s: %s", index + 1, path, exc)
            raise SynthesisFailure(f"segment {index + 1} failed") from exc
        logger.debug("TTS segment %d/%d: %d bytes", index + 1, total, len(audio))

    @staticmethod
    def _assemble(chunk_paths: List[Path], output_path: Path) -> int:
        with output_path.open("wb") as output:
            for path in chunk_paths:
                with path.open("rb") as chunk:
                    shutil.copyfileobj(chunk, output)
            return output.tell()

    @staticmethod
    def _remove(paths: List[Path]) -> None:
        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                logger.error("Error deleting temporary chunk file %s: %s", path, exc)
