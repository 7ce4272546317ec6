import re

from soil_song.utils import build_storage_name, slugify


def test_slugify_basic():
    assert slugify("Soil Story 2024.mp3") == "soil_story_2024_mp3"


def test_slugify_handles_empty():
    assert slugify(None) == ""
    assert slugify("") == ""
    assert slugify("---") == ""


def test_slugify_truncates():
    assert slugify("a" * 60, max_length=10) == "a" * 10


def test_build_storage_name_with_unique_id():
    assert build_storage_name("soil", ".jpg", "abc123") == "soil_abc123.jpg"


def test_build_storage_name_adds_missing_dot():
    assert build_storage_name("soil_story", "mp3", "abc") == "soil_story_abc.mp3"


def test_build_storage_name_is_unique():
    first = build_storage_name("soil", ".jpg")
    second = build_storage_name("soil", ".jpg")

    assert first != second
    assert re.fullmatch(r"soil_[0-9a-f]{32}\.jpg", first)


def test_build_storage_name_falls_back_when_prefix_slugs_to_nothing():
    assert build_storage_name("!!!", ".bin", "x") == "file_x.bin"
