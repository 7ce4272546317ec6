import pathlib
import sys

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from soil_song.config import Settings, get_settings  # noqa: E402


@pytest.fixture
def settings(tmp_path: pathlib.Path) -> Settings:
    """Settings isolated from the developer's environment and `.env`."""

    return Settings(
        _env_file=None,
        ibm_api_key="test-key",
        ibm_project_id="project-123",
        ibm_api_url="https://ibm.example.com/ml/v1/text/generation",
        ibm_iam_url="https://iam.example.com/identity/token",
        tts_base_url="https://tts.example.com/translate_tts",
        audio_storage_path=tmp_path / "audio",
        upload_path=tmp_path / "uploads",
        inference_deadline=5,
    )


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
