import base64

import pytest

from soil_song.services.uploads import ImageStore, ImageTooLarge, InvalidImage

PIXEL = b"\xff\xd8\xff\xe0fake-jpeg-bytes\xff\xd9"


@pytest.mark.asyncio
async def test_save_base64_writes_unique_jpeg(tmp_path):
    store = ImageStore(tmp_path / "uploads", max_bytes=1024)

    stored = await store.save_base64(base64.b64encode(PIXEL).decode())

    assert stored.path.read_bytes() == PIXEL
    assert stored.path.parent == tmp_path / "uploads"
    assert stored.path.name.startswith("soil_")
    assert stored.path.suffix == ".jpg"
    assert stored.locator == f"/uploads/{stored.path.name}"
    assert stored.size_bytes == len(PIXEL)


@pytest.mark.asyncio
async def test_data_url_prefix_is_accepted(tmp_path):
    store = ImageStore(tmp_path, max_bytes=1024)
    encoded = "data:image/jpeg;base64," + base64.b64encode(PIXEL).decode()

    stored = await store.save_base64(encoded)

    assert stored.path.read_bytes() == PIXEL


def test_invalid_base64_rejected(tmp_path):
    with pytest.raises(InvalidImage):
        ImageStore(tmp_path, max_bytes=1024).decode("not*base64!")


def test_oversized_image_rejected(tmp_path):
    store = ImageStore(tmp_path, max_bytes=4)

    with pytest.raises(ImageTooLarge):
        store.decode(base64.b64encode(PIXEL).decode())
