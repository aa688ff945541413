from datetime import datetime, timedelta

import pytest

from catalog_media import images
from catalog_media.exceptions import NotFoundError, ValidationError
from catalog_media.models import Product, ProductImage
from catalog_media.records import ImageRecord


VALID_HASH = "a" * 64


def _create(db, product_id, n=0, **kwargs):
    values = dict(
        product_id=product_id,
        storage_key=f"products/{product_id}/images/original/img{n}.png",
        url=f"https://shop-zone.b-cdn.net/products/{product_id}/images/original/img{n}.png",
    )
    values.update(kwargs)
    return images.create_image(db, **values)


def test_positions_auto_assigned_in_creation_order(db, make_product):
    product = make_product()
    created = [_create(db, product.id, n) for n in range(3)]

    assert [r.position for r in created] == [0, 1, 2]
    snapshots = [ImageRecord.from_model(r) for r in created]
    assert snapshots[0].is_primary()
    assert not any(s.is_primary() for s in snapshots[1:])


def test_positions_are_per_product(db, make_product):
    first, second = make_product(), make_product()
    _create(db, first.id, 0)
    _create(db, first.id, 1)
    assert _create(db, second.id, 0).position == 0


def test_explicit_position_is_kept_and_next_follows_max(db, make_product):
    product = make_product()
    assert _create(db, product.id, 0, position=5).position == 5
    assert _create(db, product.id, 1).position == 6


def test_position_ties_are_tolerated(db, make_product):
    product = make_product()
    _create(db, product.id, 0, position=0)
    _create(db, product.id, 1, position=0)
    listed = images.list_product_images(db, product.id)
    assert [r.position for r in listed] == [0, 0]


def test_alt_text_derived_from_product_title(db, make_product):
    product = make_product("Silk Scarf")
    assert _create(db, product.id).alt == "Silk Scarf - Product Image"


def test_explicit_alt_text_kept(db, make_product):
    product = make_product("Silk Scarf")
    assert _create(db, product.id, alt="Front view").alt == "Front view"


def test_alt_text_truncated_to_limit(db, make_product):
    product = make_product("x" * 200)
    assert len(_create(db, product.id).alt) == 160


def test_defaults(db, make_product):
    record = _create(db, make_product().id)
    assert record.size_variant == "original"
    assert record.created_at is not None
    assert not hasattr(record, "updated_at")


def test_unknown_product_raises_not_found(db):
    with pytest.raises(NotFoundError):
        _create(db, 999)


@pytest.mark.parametrize(
    "overrides,field",
    [
        ({"storage_key": ""}, "storage_key"),
        ({"storage_key": "k" * 513}, "storage_key"),
        ({"url": ""}, "url"),
        ({"url": "not a url"}, "url"),
        ({"url": "ftp://files.example.com/a.png"}, "url"),
        ({"url": "https://cdn.example.com/" + "a" * 500}, "url"),
        ({"alt": "a" * 161}, "alt"),
        ({"position": -1}, "position"),
        ({"width": 0}, "width"),
        ({"height": -5}, "height"),
        ({"file_size": 0}, "file_size"),
        ({"size_variant": "huge"}, "size_variant"),
        ({"content_type": ""}, "content_type"),
        ({"content_type": "x" * 101}, "content_type"),
        ({"content_hash": "abc"}, "content_hash"),
    ],
)
def test_invalid_fields_rejected_before_persistence(db, make_product, overrides, field):
    product = make_product()
    with pytest.raises(ValidationError) as exc_info:
        _create(db, product.id, **overrides)
    assert exc_info.value.field == field
    db.rollback()
    assert images.count_images(db) == 0


def test_valid_optional_fields_accepted(db, make_product):
    record = _create(
        db,
        make_product().id,
        width=800,
        height=600,
        size_variant="large",
        file_size=2048,
        content_type="image/png",
        content_hash=VALID_HASH,
    )
    assert record.content_hash == VALID_HASH
    assert record.size_variant == "large"


def test_product_deletion_cascades_to_images(db, make_product):
    keep, drop = make_product(), make_product()
    _create(db, keep.id, 0)
    _create(db, drop.id, 0)
    _create(db, drop.id, 1)

    db.delete(db.get(Product, drop.id))
    db.commit()

    assert db.query(ProductImage).filter(ProductImage.product_id == drop.id).count() == 0
    assert images.count_images(db) == 1


def test_counts_and_sample(db, make_product):
    products = [make_product() for _ in range(3)]
    make_product()  # 没有图片的商品
    for i, product in enumerate(products):
        for n in range(i + 1):
            _create(db, product.id, n)

    assert images.count_images(db) == 6
    assert images.count_products_with_images(db) == 3

    sample = images.sample_images(db, limit=5)
    assert len(sample) == 5
    assert sample[0].product.title == products[0].title


def test_purge_with_product_filter(db, make_product):
    first, second = make_product(), make_product()
    _create(db, first.id, 0)
    _create(db, first.id, 1)
    _create(db, second.id, 0)

    assert images.purge_images(db, product_id=first.id) == 2
    assert images.count_images(db) == 1


def test_purge_without_filter_deletes_everything(db, make_product):
    for _ in range(2):
        product = make_product()
        _create(db, product.id, 0)
        _create(db, product.id, 1)

    assert images.purge_images(db) == 4
    assert images.count_images(db) == 0
    assert images.count_products_with_images(db) == 0
    # 商品本身不受影响
    assert db.query(Product).count() == 2


def test_get_image_not_found(db):
    with pytest.raises(NotFoundError):
        images.get_image(db, 123)


def test_find_by_hash_only_matches_originals(db, make_product):
    product = make_product()
    _create(db, product.id, 0, content_hash=VALID_HASH, size_variant="thumb")
    assert images.find_by_hash(db, product.id, VALID_HASH) is None
    original = _create(db, product.id, 1, content_hash=VALID_HASH)
    assert images.find_by_hash(db, product.id, VALID_HASH).id == original.id


def test_delete_image_removes_object_and_record(db, make_product, storage, fake_cdn):
    record = _create(db, make_product().id)
    fake_cdn.objects[record.storage_key] = b"x"

    images.delete_image(db, storage, record.id)

    assert record.storage_key not in fake_cdn.objects
    assert images.count_images(db) == 0


def test_delete_image_tolerates_missing_object(db, make_product, storage):
    record = _create(db, make_product().id, storage_key="legacy/products/1.png")
    images.delete_image(db, storage, record.id)
    assert images.count_images(db) == 0


def test_delete_image_keeps_record_when_storage_fails(db, make_product, storage, fake_cdn):
    from catalog_media.exceptions import StorageTransportError

    record = _create(db, make_product().id)
    fake_cdn.failures[("DELETE", record.storage_key)] = 503

    with pytest.raises(StorageTransportError):
        images.delete_image(db, storage, record.id)
    assert images.count_images(db) == 1


def test_daily_upload_counts_fill_missing_days(db, make_product):
    product = make_product()
    _create(db, product.id, 0)
    _create(db, product.id, 1, size_variant="thumb")
    old = _create(db, product.id, 2)
    old.created_at = datetime.utcnow() - timedelta(days=40)
    db.commit()

    today = datetime.utcnow().date()
    days = images.daily_upload_counts(db, 7, today=today)

    assert [d["date"] for d in days] == [str(today - timedelta(days=6 - i)) for i in range(7)]
    assert [d["count"] for d in days] == [0, 0, 0, 0, 0, 0, 2]
    assert images.count_by_size_variant(db) == {"original": 2, "thumb": 1}
