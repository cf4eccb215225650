from __future__ import annotations

import base64

import pytest

from streamrelay.engine.errors import AttachmentError
from streamrelay.shared.services.attachments import (
    AttachmentStore,
    encode_image_file,
    extension_for,
)


@pytest.mark.parametrize(
    ("media_type", "ext"),
    [("image/png", "png"), ("image/JPEG", "jpeg"), ("image/svg+xml", "svg")],
)
def test_extension_for_images(media_type, ext) -> None:
    assert extension_for(media_type) == ext


@pytest.mark.parametrize("media_type", ["text/plain", "image/", "", "image/../../x"])
def test_extension_for_rejects_others(media_type) -> None:
    with pytest.raises(AttachmentError):
        extension_for(media_type)


def test_save_and_cleanup(tmp_path) -> None:
    store = AttachmentStore(tmp_path)
    images = [
        {"data": base64.b64encode(b"one").decode(), "mediaType": "image/png"},
        {"data": base64.b64encode(b"two").decode(), "mediaType": "image/gif"},
    ]

    paths = store.save_images("client-1", images)

    assert len(paths) == 2
    assert [open(p, "rb").read() for p in paths] == [b"one", b"two"]
    assert all(p.startswith(str(store.client_dir("client-1").resolve())) for p in paths)
    assert store.cleanup("client-1") is True
    assert not store.client_dir("client-1").exists()
    assert store.cleanup("client-1") is False


def test_no_images_creates_nothing(tmp_path) -> None:
    store = AttachmentStore(tmp_path)

    assert store.save_images("client-1", []) == []
    assert not store.client_dir("client-1").exists()


def test_invalid_base64_is_rejected(tmp_path) -> None:
    store = AttachmentStore(tmp_path)

    with pytest.raises(AttachmentError, match="base64"):
        store.save_images("c", [{"data": "not base64!", "mediaType": "image/png"}])


def test_encode_image_file(tmp_path) -> None:
    path = tmp_path / "shot.png"
    path.write_bytes(b"\x89PNG")

    encoded = encode_image_file(path)

    assert encoded["mediaType"] == "image/png"
    assert encoded["name"] == "shot.png"
    assert base64.b64decode(encoded["data"]) == b"\x89PNG"

    (tmp_path / "notes.txt").write_text("x")
    with pytest.raises(AttachmentError):
        encode_image_file(tmp_path / "notes.txt")
    with pytest.raises(AttachmentError, match="cannot read"):
        encode_image_file(tmp_path / "missing.png")
