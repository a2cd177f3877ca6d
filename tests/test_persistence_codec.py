import json
from decimal import Decimal

import pytest

from storefront.domain.cart import Cart, CartItem
from storefront.domain.errors import PersistenceCorrupt, PersistenceWriteFailed
from storefront.services.persistence_codec import PersistenceCodec
from tests.conftest import make_product


def test_encode_decode_preserves_items(codec):
    cart = Cart(items=[CartItem(id="A", product_id="A", quantity=2, product=make_product("A", price="19.99"))])

    codec.save(cart)
    loaded, corrupt = codec.load()

    assert corrupt is None
    assert loaded.items[0].quantity == 2
    assert loaded.items[0].product.price == Decimal("19.99")
    assert loaded.items[0].added_at == cart.items[0].added_at


def test_encoded_payload_has_no_derived_totals(codec, fake_redis):
    codec.save(Cart(items=[CartItem(id="A", product_id="A", quantity=1, product=make_product("A"))]))

    payload = json.loads(fake_redis.data["myShopCart:test"])

    assert set(payload) == {"items"}
    assert "subtotal" not in payload
    assert "stock_quantity" in payload["items"][0]["product"]


def test_absent_key_loads_empty_cart(codec):
    cart, corrupt = codec.load()

    assert cart.is_empty
    assert corrupt is None


@pytest.mark.parametrize(
    "raw",
    [
        "{not json",
        "[]",
        json.dumps({"cart": []}),
        json.dumps({"items": "A"}),
        json.dumps({"items": [{"product_id": "A", "quantity": -1}]}),
    ],
)
def test_corrupt_payload_is_discarded(codec, fake_redis, raw):
    fake_redis.data["myShopCart:test"] = raw

    cart, corrupt = codec.load()

    assert cart.is_empty
    assert isinstance(corrupt, PersistenceCorrupt)
    assert "myShopCart:test" not in fake_redis.data


def test_duplicate_products_in_storage_are_corrupt():
    item = {"id": "A", "product_id": "A", "quantity": 1, "product": {"id": "A", "name": "A", "price": "1.00"}}

    with pytest.raises(PersistenceCorrupt):
        PersistenceCodec.decode(json.dumps({"items": [item, item]}))


def test_save_failure_raises_write_failed(codec, fake_redis):
    fake_redis.fail_writes = True

    with pytest.raises(PersistenceWriteFailed):
        codec.save(Cart())
