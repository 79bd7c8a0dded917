import io
import os

import pytest
from PIL import Image
from starlette.datastructures import Headers, UploadFile

import images
from errors import BadRequest
from images import ImageStore


def _png(size=(2000, 1000), color="red"):
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def store(tmp_path):
    return ImageStore(str(tmp_path), max_file_size=2 * 1024 * 1024)


def test_creates_folders(store, tmp_path):
    assert sorted(os.listdir(tmp_path)) == ["categories", "collections", "products", "temp", "users"]


def test_save_resizes_and_converts_to_webp(store, tmp_path):
    path = store.save(_png(), "image/png", "photo.png", "products")

    assert path.startswith("/uploads/products/") and path.endswith(".webp")
    with Image.open(tmp_path / "products" / os.path.basename(path)) as img:
        assert img.format == "WEBP"
        assert img.size == (1200, 600)


def test_small_images_are_not_upscaled(store, tmp_path):
    path = store.save(_png((300, 200)), "image/png", "small.png", "users")
    with Image.open(tmp_path / "users" / os.path.basename(path)) as img:
        assert img.size == (300, 200)


def test_undecodable_image_keeps_original_bytes(store, tmp_path):
    path = store.save(b"not really a jpeg", "image/jpeg", "broken.JPG", "temp")
    assert path.endswith(".jpg")
    assert (tmp_path / "temp" / os.path.basename(path)).read_bytes() == b"not really a jpeg"


@pytest.mark.parametrize("data,content_type,folder", [
    (b"x" * (2 * 1024 * 1024 + 1), "image/png", "temp"),
    (b"x", "application/pdf", "temp"),
    (b"x", "image/png", "secrets"),
])
def test_save_rejects_invalid_uploads(store, data, content_type, folder):
    with pytest.raises(BadRequest):
        store.save(data, content_type, "f", folder)


def test_delete_file_stays_inside_upload_root(store, tmp_path):
    outside = tmp_path.parent / "keep-me.txt"
    outside.write_text("precious")
    path = store.save(_png((10, 10)), "image/png", "a.png", "temp")

    assert store.delete_file("/uploads/../keep-me.txt") is False
    assert store.delete_file("/etc/passwd") is False
    assert outside.exists()
    assert store.delete_file(path) is True
    assert store.delete_file(path) is False


def test_upload_endpoints(client, admin_headers, user_headers, make_product, store):
    from main import app

    app.dependency_overrides[images.get_image_store] = lambda: store
    try:
        files = {"file": ("a.png", _png((50, 50)), "image/png")}
        assert client.post("/api/upload/category-image", files=files, headers=user_headers).status_code == 403

        single = client.post("/api/upload/category-image", files=files, headers=admin_headers)
        assert single.status_code == 200
        assert single.json()["file_path"].startswith("/uploads/categories/")

        product = make_product()
        many = client.post(
            "/api/upload/product-images-multiple",
            files=[("files", ("1.png", _png((20, 20)), "image/png")), ("files", ("2.png", _png((20, 20), "blue"), "image/png"))],
            data={"product_id": product["id"], "color": "Red"},
            headers=admin_headers,
        )
        assert many.status_code == 200
        saved = many.json()["images"]
        assert [i["is_main"] for i in saved] == [True, False]
        assert {i["color"] for i in saved} == {"Red"}

        deleted = client.request("DELETE", "/api/upload/file", json={"file_path": single.json()["file_path"]}, headers=admin_headers)
        assert deleted.json()["deleted"] is True
    finally:
        app.dependency_overrides.clear()


class RecordingStream(io.BytesIO):
    def __init__(self, data):
        super().__init__(data)
        self.requested = []

    def read(self, size=-1):
        self.requested.append(size)
        return super().read(size)


def test_oversized_upload_is_read_only_up_to_the_limit(tmp_path):
    small_store = ImageStore(str(tmp_path), max_file_size=1024)
    stream = RecordingStream(b"x" * 10_000)
    upload = UploadFile(stream, filename="big.png", headers=Headers({"content-type": "image/png"}))

    with pytest.raises(BadRequest):
        images._save_upload(small_store, upload, "temp")

    assert stream.requested == [1025]
    assert stream.tell() == 1025
    assert os.listdir(tmp_path / "temp") == []
