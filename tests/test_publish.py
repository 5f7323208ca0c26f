"""Tests for artifact upload, short links and QR codes."""

import re
import threading
import zipfile
from pathlib import Path

import pytest
from PIL import Image

from conftest import write_glb

SHORT_LINK_RE = re.compile(r"^[A-Za-z0-9_-]{8}$")


def create_artifacts(work_dir: Path):
    """Write a GLB, USDZ and thumbnail the way the stages leave them."""
    glb = write_glb(work_dir / "optimized.glb")
    usdz = work_dir / "model.usdz"
    with zipfile.ZipFile(usdz, "w") as zf:
        zf.writestr("model.usdc", b"usd")
    thumbnail = work_dir / "thumbnail.jpg"
    Image.new("RGB", (400, 400), (10, 20, 30)).save(thumbnail, "JPEG")
    return glb, usdz, thumbnail


class FailingStorage:
    """Object storage that rejects one kind of upload."""

    def __init__(self, inner, fail_suffix: str):
        self.inner = inner
        self.fail_suffix = fail_suffix

    def upload(self, local_path, key, content_type=None):
        if key.endswith(self.fail_suffix):
            raise ConnectionError(f"storage unavailable for {key}")
        return self.inner.upload(local_path, key, content_type)


class TestShortLinks:
    """Tests for short link generation."""

    def test_format(self):
        from model_conversion.publish import generate_short_link

        for _ in range(50):
            assert SHORT_LINK_RE.match(generate_short_link(lambda link: False))

    def test_retries_on_collision(self):
        from model_conversion.publish import generate_short_link

        seen = []

        def exists(link):
            seen.append(link)
            return len(seen) < 3

        link = generate_short_link(exists)
        assert len(seen) == 3
        assert link == seen[-1]

    def test_gives_up_after_max_attempts(self):
        from model_conversion.publish import PublishError, generate_short_link

        with pytest.raises(PublishError, match="unique short link"):
            generate_short_link(lambda link: True, max_attempts=4)


class TestQrCode:
    """Tests for QR code rendering."""

    def test_qr_png(self, tmp_path, config):
        from model_conversion.publish import generate_qr_code

        path = generate_qr_code("https://ar.test/ar/abcdEFGH", tmp_path / "qr.png", config)

        with Image.open(path) as img:
            assert img.format == "PNG"
            assert img.size == (300, 300)
            colors = {c for _, c in img.convert("RGB").getcolors(maxcolors=1024)}
        assert (0x63, 0x66, 0xF1) in colors
        assert (255, 255, 255) in colors

    def test_custom_size(self, tmp_path):
        from model_conversion.config import ConversionConfig
        from model_conversion.publish import generate_qr_code

        config = ConversionConfig(temp_dir=tmp_path, qr_size=128)
        path = generate_qr_code("https://example.com/ar/x", tmp_path / "qr", config)

        assert path.suffix == ".png"
        with Image.open(path) as img:
            assert img.size == (128, 128)


class TestUploads:
    """Tests for concurrent artifact uploads."""

    def test_upload_artifacts(self, tmp_path, object_storage):
        from model_conversion.publish import upload_artifacts

        glb, usdz, thumbnail = create_artifacts(tmp_path)
        uploaded = upload_artifacts("model-1", glb, usdz, thumbnail, object_storage)

        assert re.match(r"^https://cdn\.test/models/model-1/processed/[A-Za-z0-9_-]{8}\.glb$", uploaded.glb_url)
        assert re.match(r"^https://cdn\.test/models/model-1/processed/[A-Za-z0-9_-]{8}\.usdz$", uploaded.usdz_url)
        assert uploaded.thumbnail_url == "https://cdn.test/models/model-1/thumbnail.jpg"

        types = object_storage.content_types
        glb_key = uploaded.glb_url.replace("https://cdn.test/", "")
        assert types[glb_key] == "model/gltf-binary"
        assert types[uploaded.usdz_url.replace("https://cdn.test/", "")] == "model/vnd.usdz+zip"
        assert types["models/model-1/thumbnail.jpg"] == "image/jpeg"
        assert object_storage.path_for(glb_key).read_bytes() == glb.read_bytes()

    def test_uploads_run_concurrently(self, tmp_path, object_storage):
        from model_conversion.publish import upload_artifacts

        barrier = threading.Barrier(3, timeout=5)

        class BarrierStorage:
            def upload(self, local_path, key, content_type=None):
                # Deadlocks (and times out) unless all three uploads overlap
                barrier.wait()
                return object_storage.upload(local_path, key, content_type)

        glb, usdz, thumbnail = create_artifacts(tmp_path)
        uploaded = upload_artifacts("model-2", glb, usdz, thumbnail, BarrierStorage())
        assert uploaded.thumbnail_url.endswith("thumbnail.jpg")

    def test_content_type_passed_by_keyword(self, tmp_path, object_storage):
        from model_conversion.publish import upload_artifacts

        class KeywordOnlyStorage:
            def __init__(self):
                self.content_types = {}

            def upload(self, local_path, key, *, content_type=None):
                self.content_types[key] = content_type
                return object_storage.upload(local_path, key)

        storage = KeywordOnlyStorage()
        glb, usdz, thumbnail = create_artifacts(tmp_path)
        upload_artifacts("model-3", glb, usdz, thumbnail, storage)

        assert sorted(storage.content_types.values()) == [
            "image/jpeg", "model/gltf-binary", "model/vnd.usdz+zip",
        ]

    def test_upload_failure(self, tmp_path, object_storage):
        from model_conversion.publish import PublishError, upload_artifacts

        glb, usdz, thumbnail = create_artifacts(tmp_path)
        storage = FailingStorage(object_storage, ".usdz")

        with pytest.raises(PublishError, match="USDZ"):
            upload_artifacts("model-3", glb, usdz, thumbnail, storage)


class TestShareLink:
    """Tests for AR link publishing."""

    def test_create_share_link(self, tmp_path, config, model_store, object_storage):
        from model_conversion.publish import create_share_link

        link = create_share_link(tmp_path, object_storage, model_store, config)

        assert SHORT_LINK_RE.match(link.short_link)
        assert link.ar_url == f"https://ar.test/ar/{link.short_link}"
        assert link.qr_code_url == f"https://cdn.test/qr/{link.short_link}.png"
        assert object_storage.content_types[f"qr/{link.short_link}.png"] == "image/png"

    def test_avoids_existing_links(self, tmp_path, config, model_store, object_storage, monkeypatch):
        from model_conversion import publish

        model_store.create_model("other", shortLink="TAKEN123")
        candidates = iter(["TAKEN123", "FRESH456"])
        monkeypatch.setattr(publish, "random_id", lambda length=8: next(candidates))

        link = publish.create_share_link(tmp_path, object_storage, model_store, config)
        assert link.short_link == "FRESH456"

    def test_qr_upload_failure_raises(self, tmp_path, config, model_store, object_storage):
        from model_conversion.publish import PublishError, create_share_link

        storage = FailingStorage(object_storage, ".png")
        with pytest.raises(PublishError):
            create_share_link(tmp_path, storage, model_store, config)
