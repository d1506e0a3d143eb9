"""
test_cart_lifecycle.py — Tests for cart creation by identity, the read
view, deletion and guest → user merge.
Run: pytest test_cart_lifecycle.py -v
"""
import os
os.environ['FLASK_RUN_FROM_CLI'] = '1'

import pytest
from decimal import Decimal

from storefront import create_app, db
from storefront.auth.models import User, RoleEnum
from storefront.catalog.models import Product, ProductStatus
from storefront.cart.items import add_item
from storefront.cart.lifecycle import (
    cart_view, delete_cart, find_or_create, get_cart, merge_guest_cart,
)
from storefront.cart.locking import lock_cart, lock_carts
from storefront.cart.models import Cart, CartItem
from storefront.errors import CartError, CART_NOT_FOUND, MISSING_IDENTITY, OUT_OF_STOCK


# ── Fixtures ──────────────────────────────────────────────────────

@pytest.fixture(scope='function')
def client():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        u = User(username='shopper', name='Shopper', role=RoleEnum.customer)
        u.set_password('shop123')
        db.session.add(u)
        db.session.commit()
        yield app.test_client()
        db.drop_all()


def shopper_id():
    return User.query.filter_by(username='shopper').first().id


def make_product(sku, price='100.00', rate='7', stock=10):
    p = Product(sku=sku, name=f'Product {sku}', price_excl_tax=Decimal(price),
                tax_rate=Decimal(rate), stock_quantity=stock, status=ProductStatus.active)
    db.session.add(p)
    db.session.commit()
    return p


# ── 1. find_or_create ─────────────────────────────────────────────

def test_find_or_create_guest_is_idempotent(client):
    with client.application.app_context():
        first = find_or_create(session_id='tok-1')
        db.session.commit()
        again = find_or_create(session_id='tok-1')
        assert first.id == again.id
        assert again.is_guest
        assert again.total_amount == Decimal('0.00')
        assert Cart.query.count() == 1


def test_find_or_create_user_wins_over_session(client):
    with client.application.app_context():
        cart = find_or_create(user_id=shopper_id(), session_id='tok-ignored')
        db.session.commit()
        assert cart.user_id == shopper_id()
        assert cart.session_id is None
        assert Cart.query.filter_by(session_id='tok-ignored').first() is None


@pytest.mark.parametrize('kwargs', [{}, {'session_id': ''}, {'user_id': None, 'session_id': None}])
def test_find_or_create_requires_identity(client, kwargs):
    with client.application.app_context():
        with pytest.raises(CartError) as exc:
            find_or_create(**kwargs)
        assert exc.value.code == MISSING_IDENTITY


# ── 2. View / delete / locking ────────────────────────────────────

def test_cart_view_formats_money_as_strings(client):
    with client.application.app_context():
        p = make_product('VIEW-1', price='9.99')
        cart = add_item(find_or_create(session_id='tok-1'), p.id, 3)
        db.session.commit()

        view = get_cart(cart.id)
        assert view['has_items'] is True
        assert view['voucher_attached'] is False
        assert view['subtotal_excl_tax'] == '29.97'
        assert view['total_tax'] == '2.10'
        assert view['total_amount'] == '32.07'
        item = view['items'][0]
        assert item['sku'] == 'VIEW-1'
        assert item['unit_price_incl_tax'] == '10.69'
        assert item['line_total'] == '32.07'
        assert get_cart(12345) is None


def test_delete_cart_cascades_items(client):
    with client.application.app_context():
        p = make_product('DEL-1')
        cart = add_item(find_or_create(session_id='tok-1'), p.id, 1)
        delete_cart(cart)
        db.session.commit()
        assert Cart.query.count() == 0
        assert CartItem.query.count() == 0


def test_lock_missing_cart(client):
    with client.application.app_context():
        with pytest.raises(CartError) as exc:
            lock_cart(999)
        assert exc.value.code == CART_NOT_FOUND


def test_lock_carts_in_id_order(client):
    with client.application.app_context():
        a = find_or_create(session_id='tok-a')
        b = find_or_create(session_id='tok-b')
        c = find_or_create(user_id=shopper_id())
        locked = lock_carts([c.id, a.id, b.id, a.id])
        assert [x.id for x in locked] == sorted({a.id, b.id, c.id})


def test_merge_locks_both_carts(client, monkeypatch):
    import storefront.cart.lifecycle as lifecycle

    seen = []

    def recording_lock(cart_ids):
        seen.append(list(cart_ids))
        return lock_carts(cart_ids)

    monkeypatch.setattr(lifecycle, 'lock_carts', recording_lock)

    with client.application.app_context():
        p = make_product('L-1')
        guest = add_item(find_or_create(session_id='guest-lock'), p.id, 1)
        db.session.commit()
        guest_id = guest.id

        result = merge_guest_cart('guest-lock', shopper_id())
        assert result.merged == [p.id]
        assert sorted(seen[0]) == sorted([guest_id, result.cart.id])


# ── 3. Merge ──────────────────────────────────────────────────────

def test_merge_into_new_user_cart_deletes_guest(client):
    with client.application.app_context():
        p = make_product('M-1')
        add_item(find_or_create(session_id='guest-1'), p.id, 2)
        db.session.commit()

        result = merge_guest_cart('guest-1', shopper_id())
        db.session.commit()

        assert result.merged == [p.id]
        assert result.skipped == []
        assert result.guest_cart_id is None
        assert Cart.query.filter_by(session_id='guest-1').first() is None
        user_cart = Cart.query.filter_by(user_id=shopper_id()).one()
        assert [(i.product_id, i.quantity) for i in user_cart.items] == [(p.id, 2)]
        assert user_cart.total_amount == Decimal('214.00')


def test_merge_combines_quantities(client):
    with client.application.app_context():
        p = make_product('M-1')
        q = make_product('M-2', price='20.00')
        add_item(find_or_create(user_id=shopper_id()), p.id, 1)
        guest = find_or_create(session_id='guest-1')
        add_item(add_item(guest, p.id, 2), q.id, 1)
        db.session.commit()

        result = merge_guest_cart('guest-1', shopper_id())
        db.session.commit()

        lines = {i.product_id: i.quantity for i in result.cart.items}
        assert lines == {p.id: 3, q.id: 1}
        assert result.cart.subtotal_excl_tax == Decimal('320.00')


def test_merge_reports_and_keeps_out_of_stock_items(client):
    with client.application.app_context():
        ok  = make_product('OK-1', stock=10)
        low = make_product('LOW-1', price='50.00', stock=5)
        guest = find_or_create(session_id='guest-1')
        add_item(add_item(guest, ok.id, 2), low.id, 3)
        db.session.commit()

        # Stock sold elsewhere before the shopper logs in
        low = db.session.get(Product, low.id)
        low.stock_quantity = 1
        db.session.commit()

        result = merge_guest_cart('guest-1', shopper_id())
        db.session.commit()

        assert result.merged == [ok.id]
        assert len(result.skipped) == 1
        assert result.skipped[0].product_id == low.id
        assert result.skipped[0].quantity == 3
        assert result.skipped[0].reason == OUT_OF_STOCK

        guest = db.session.get(Cart, result.guest_cart_id)
        assert [(i.product_id, i.quantity) for i in guest.items] == [(low.id, 3)]
        assert guest.subtotal_excl_tax == Decimal('150.00')
        assert [i.product_id for i in result.cart.items] == [ok.id]


def test_merge_without_guest_cart_returns_none(client):
    with client.application.app_context():
        assert merge_guest_cart('nobody', shopper_id()) is None
