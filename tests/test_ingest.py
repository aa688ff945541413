from unittest.mock import MagicMock

import httpx
import pytest

from catalog_media import images
from catalog_media.cdn import CdnStorage
from catalog_media.exceptions import NotFoundError, StorageTransportError, ValidationError

from conftest import PUBLIC_URL, make_settings


PNG = b"\x89PNG\r\n\x1a\n-original-bytes"


def test_ingest_without_tinify_stores_original_only(db, make_product, storage, fake_cdn):
    product = make_product("Linen Shirt")

    records, deduplicated = images.ingest_image(
        db, storage, product_id=product.id, data=PNG, filename="front.png", content_type="image/png"
    )

    assert deduplicated is False
    (record,) = records
    assert record.size_variant == "original"
    assert record.position == 0
    assert record.alt == "Linen Shirt - Product Image"
    assert record.file_size == len(PNG)
    assert record.content_type == "image/png"
    assert record.content_hash == images.compute_content_hash(PNG)
    assert len(record.content_hash) == 64
    assert record.storage_key.startswith(f"products/{product.id}/images/original/front_")
    assert record.storage_key.endswith(".png")
    assert record.url == f"{PUBLIC_URL}/{record.storage_key}"
    assert fake_cdn.objects[record.storage_key] == PNG


def test_ingest_stores_derived_variants_at_shared_position(db, make_product, storage, fake_cdn, monkeypatch):
    product = make_product()
    images.create_image(
        db,
        product_id=product.id,
        storage_key="products/x/existing.png",
        url=f"{PUBLIC_URL}/products/x/existing.png",
    )

    def fake_variants(data, widths, target_format=None, settings=None):
        assert target_format == "jpg"
        return [
            ("thumb", b"thumb-bytes", 150, 100),
            ("large", b"large-bytes", 1200, 800),
        ]

    monkeypatch.setattr(images, "derive_variants", fake_variants)

    records, _ = images.ingest_image(
        db, storage, product_id=product.id, data=b"jpeg-bytes", filename="back.JPEG", content_type=None
    )

    assert [r.size_variant for r in records] == ["original", "thumb", "large"]
    assert {r.position for r in records} == {1}
    assert all(r.content_type == "image/jpeg" for r in records)
    assert records[1].width == 150 and records[1].height == 100
    assert "/images/thumb/back_" in records[1].storage_key
    assert records[2].content_hash == images.compute_content_hash(b"large-bytes")
    assert len(fake_cdn.calls("PUT")) == 3


def test_ingest_derives_variants_when_storage_settings_carry_tinify_key(db, make_product, fake_cdn, monkeypatch):
    # 全局配置中没有 TINIFY_API_KEY，只通过注入的配置启用
    settings = make_settings(TINIFY_API_KEY="injected-key", IMAGE_VARIANT_WIDTHS={"thumb": 150, "medium": 600})
    storage = CdnStorage(settings, transport=httpx.MockTransport(fake_cdn.handler))

    mock_tinify = MagicMock()
    mock_source = MagicMock()
    mock_result = MagicMock()
    mock_result.to_buffer.return_value = b"scaled-bytes"
    mock_result.width = 150
    mock_result.height = 100
    mock_source.resize.return_value = mock_source
    mock_source.convert.return_value = mock_source
    mock_source.result.return_value = mock_result
    mock_tinify.from_buffer.return_value = mock_source
    monkeypatch.setattr("catalog_media.tinify_client.tinify", mock_tinify)

    records, _ = images.ingest_image(
        db, storage, product_id=make_product().id, data=PNG, filename="front.png", content_type="image/png"
    )

    assert [r.size_variant for r in records] == ["original", "thumb", "medium"]
    assert mock_tinify.key == "injected-key"
    mock_source.resize.assert_any_call(method="scale", width=600)
    mock_source.convert.assert_called_with(type="image/png")
    assert len(fake_cdn.calls("PUT")) == 3


def test_ingest_deduplicates_same_content(db, make_product, storage, fake_cdn):
    product = make_product()
    first, _ = images.ingest_image(db, storage, product_id=product.id, data=PNG, filename="a.png")

    again, deduplicated = images.ingest_image(db, storage, product_id=product.id, data=PNG, filename="b.png")

    assert deduplicated is True
    assert [r.id for r in again] == [first[0].id]
    assert len(fake_cdn.calls("PUT")) == 1
    assert images.count_images(db) == 1


def test_same_content_for_other_product_is_not_deduplicated(db, make_product, storage):
    first, second = make_product(), make_product()
    images.ingest_image(db, storage, product_id=first.id, data=PNG, filename="a.png")
    _, deduplicated = images.ingest_image(db, storage, product_id=second.id, data=PNG, filename="a.png")
    assert deduplicated is False


def test_ingest_rejects_empty_upload(db, make_product, storage, fake_cdn):
    with pytest.raises(ValidationError):
        images.ingest_image(db, storage, product_id=make_product().id, data=b"", filename="a.png")
    assert fake_cdn.requests == []


def test_ingest_unknown_product(db, storage, fake_cdn):
    with pytest.raises(NotFoundError):
        images.ingest_image(db, storage, product_id=404, data=PNG, filename="a.png")
    assert fake_cdn.requests == []


def test_ingest_failure_cleans_up_uploaded_objects(db, make_product, storage, fake_cdn, monkeypatch):
    product = make_product()
    monkeypatch.setattr(
        images,
        "derive_variants",
        lambda data, widths, target_format=None, settings=None: [("thumb", b"thumb-bytes", 150, 150)],
    )
    original_upload = storage.upload

    def flaky_upload(data, key, content_type):
        if "/thumb/" in key:
            raise StorageTransportError("CDN上传失败", status_code=500, operation="put", key=key)
        return original_upload(data, key, content_type)

    monkeypatch.setattr(storage, "upload", flaky_upload)

    with pytest.raises(StorageTransportError):
        images.ingest_image(db, storage, product_id=product.id, data=PNG, filename="a.png")

    assert fake_cdn.objects == {}
    assert len(fake_cdn.calls("DELETE")) == 1
    assert images.count_images(db) == 0


def test_content_type_inferred_from_filename():
    assert images.infer_format("photo.JPG") == "jpg"
    assert images.infer_format("photo", "image/webp") == "webp"
    assert images.infer_format("notes.txt") is None
    assert images.content_type_for("jpg") == "image/jpeg"
    assert images.content_type_for(None, "notes.txt") == "text/plain"
