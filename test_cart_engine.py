"""
test_cart_engine.py — Tests for cart recalculation: aggregates, voucher
discounts, blended / pro-rata tax after discount and self-detachment.
Run: pytest test_cart_engine.py -v
"""
import os
os.environ['FLASK_RUN_FROM_CLI'] = '1'

import pytest
from decimal import Decimal
from datetime import datetime, timedelta
from types import SimpleNamespace

from storefront import create_app, db
from storefront.catalog.models import Product, ProductStatus
from storefront.cart.discounts import apply_voucher, remove_voucher
from storefront.cart.engine import (
    BlendedRateStrategy, ProRataStrategy, get_strategy, recalculate,
)
from storefront.cart.items import add_item, remove_item, update_quantity
from storefront.cart.lifecycle import find_or_create
from storefront.errors import CartError, BELOW_MINIMUM, EMPTY_CART
from storefront.vouchers.models import Voucher, DiscountType, VoucherStatus
from storefront.vouchers.usage import record_voucher_usage


# ── Fixtures ──────────────────────────────────────────────────────

@pytest.fixture(scope='function')
def client():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app.test_client()
        db.drop_all()


_sku_counter = {'n': 0}


def make_product(price='1000.00', rate='7', stock=100, status=ProductStatus.active):
    _sku_counter['n'] += 1
    p = Product(
        sku=f'SKU-{_sku_counter["n"]:05d}', name=f'Product {_sku_counter["n"]}',
        price_excl_tax=Decimal(price), tax_rate=Decimal(rate),
        stock_quantity=stock, status=status,
    )
    db.session.add(p)
    db.session.commit()
    return p


def make_voucher(**kwargs):
    now = datetime.utcnow()
    defaults = dict(
        code='SAVE10', name='Save 10%',
        discount_type=DiscountType.percentage, discount_value=Decimal('10'),
        minimum_order_amount=Decimal('0'),
        start_date=now - timedelta(days=1), end_date=now + timedelta(days=30),
        usage_count=0, status=VoucherStatus.active,
    )
    defaults.update(kwargs)
    v = Voucher(**defaults)
    db.session.add(v)
    db.session.commit()
    return v


def guest_cart(token='guest-token-1'):
    cart = find_or_create(session_id=token)
    db.session.commit()
    return cart


# ── 1. Aggregates without voucher ─────────────────────────────────

def test_single_line_totals(client):
    with client.application.app_context():
        p = make_product(price='19.99', rate='7')
        cart = add_item(guest_cart(), p.id, 3)
        line = cart.items[0]
        # unit tax 1.3993 → 1.40
        assert line.unit_tax_amount == Decimal('1.40')
        assert line.unit_price_incl_tax == Decimal('21.39')
        assert line.line_subtotal == Decimal('59.97')
        assert line.line_tax == Decimal('4.20')
        assert line.line_total == Decimal('64.17')
        assert cart.subtotal_excl_tax == Decimal('59.97')
        assert cart.total_tax == Decimal('4.20')
        assert cart.discount_amount == Decimal('0.00')
        assert cart.total_amount == Decimal('64.17')


@pytest.mark.parametrize('lines', [
    [('1000.00', '7', 1)],
    [('9.99', '7', 3), ('0.08', '15', 7)],
    [('12.34', '10', 2), ('99.95', '7', 1), ('333.33', '15', 4)],
    [('0.01', '7', 9), ('4567.89', '10', 2), ('1.00', '15', 1), ('250.00', '0', 3)],
])
def test_aggregate_consistency(client, lines):
    with client.application.app_context():
        cart = guest_cart()
        for price, rate, qty in lines:
            cart = add_item(cart, make_product(price=price, rate=rate).id, qty)

        assert cart.subtotal_excl_tax == sum((i.line_subtotal for i in cart.items), Decimal('0'))
        assert cart.total_tax == sum((i.line_tax for i in cart.items), Decimal('0'))
        assert cart.total_amount == cart.subtotal_excl_tax + cart.total_tax
        assert cart.discount_amount == Decimal('0')
        for item in cart.items:
            assert item.line_subtotal == (item.unit_price_excl_tax * item.quantity).quantize(Decimal('0.01'))
            assert item.line_tax == (item.unit_tax_amount * item.quantity).quantize(Decimal('0.01'))
            assert item.line_total == item.line_subtotal + item.line_tax


# ── 2. Vouchers and blended tax ───────────────────────────────────

def test_scenario_a_percentage_voucher(client):
    with client.application.app_context():
        p = make_product(price='1000.00', rate='7')
        make_voucher(code='TEN', discount_value=Decimal('10'))
        cart = add_item(guest_cart(), p.id, 1)
        cart = apply_voucher(cart, 'TEN')

        assert cart.voucher_code == 'TEN'
        assert cart.subtotal_excl_tax == Decimal('1000.00')
        assert cart.discount_amount == Decimal('100.00')
        assert cart.total_tax == Decimal('63.00')
        assert cart.total_amount == Decimal('963.00')


def test_scenario_b_fixed_voucher(client):
    with client.application.app_context():
        p = make_product(price='1000.00', rate='7')
        make_voucher(code='FIVEHUNDRED', discount_type=DiscountType.fixed_amount,
                     discount_value=Decimal('500'))
        cart = add_item(guest_cart(), p.id, 2)
        assert cart.total_tax == Decimal('140.00')

        cart = apply_voucher(cart, 'FIVEHUNDRED')
        assert cart.discount_amount == Decimal('500.00')
        assert cart.total_tax == Decimal('105.00')
        assert cart.total_amount == Decimal('1605.00')


def test_capped_percentage_voucher(client):
    with client.application.app_context():
        p = make_product(price='2000.00', rate='10')
        make_voucher(code='CAP', discount_value=Decimal('50'),
                     max_discount_amount=Decimal('300'))
        cart = apply_voucher(add_item(guest_cart(), p.id, 1), 'CAP')
        assert cart.discount_amount == Decimal('300.00')
        assert cart.total_tax == Decimal('170.00')          # 1700 × 10%
        assert cart.total_amount == Decimal('1870.00')


def test_fixed_voucher_larger_than_subtotal(client):
    with client.application.app_context():
        p = make_product(price='40.00', rate='7')
        make_voucher(code='BIG', discount_type=DiscountType.fixed_amount,
                     discount_value=Decimal('100'))
        cart = apply_voucher(add_item(guest_cart(), p.id, 1), 'BIG')
        assert cart.discount_amount == Decimal('40.00')
        assert cart.total_tax == Decimal('0.00')
        assert cart.total_amount == Decimal('0.00')


def test_mixed_rates_use_blended_rate(client):
    with client.application.app_context():
        a = make_product(price='1000.00', rate='7')
        b = make_product(price='500.00', rate='15')
        make_voucher(code='FIXED', discount_type=DiscountType.fixed_amount,
                     discount_value=Decimal('500'))
        cart = add_item(guest_cart(), a.id, 1)
        cart = add_item(cart, b.id, 1)
        assert cart.total_tax == Decimal('145.00')

        cart = apply_voucher(cart, 'FIXED')
        # blended rate 145 / 1500 = 9.666…% applied to 1000.00
        assert cart.total_tax == Decimal('96.67')
        assert cart.total_amount == Decimal('1096.67')


def test_rejected_apply_leaves_cart_unchanged(client):
    with client.application.app_context():
        p = make_product(price='100.00', rate='7')
        make_voucher(code='MIN500', minimum_order_amount=Decimal('500'))
        cart = add_item(guest_cart(), p.id, 1)

        with pytest.raises(CartError) as exc:
            apply_voucher(cart, 'MIN500')
        assert exc.value.code == BELOW_MINIMUM
        assert cart.voucher_code is None
        assert cart.total_amount == Decimal('107.00')


def test_apply_on_empty_cart_rejected(client):
    with client.application.app_context():
        make_voucher(code='TEN')
        with pytest.raises(CartError) as exc:
            apply_voucher(guest_cart(), 'TEN')
        assert exc.value.code == EMPTY_CART


def test_remove_voucher_restores_plain_totals(client):
    with client.application.app_context():
        p = make_product(price='1000.00', rate='7')
        make_voucher(code='TEN')
        cart = apply_voucher(add_item(guest_cart(), p.id, 1), 'TEN')
        cart = remove_voucher(cart)
        assert cart.voucher_code is None
        assert cart.discount_amount == Decimal('0.00')
        assert cart.total_amount == Decimal('1070.00')


def test_apply_does_not_consume_usage(client):
    with client.application.app_context():
        p = make_product()
        v = make_voucher(code='TEN', usage_limit=1)
        apply_voucher(add_item(guest_cart(), p.id, 1), 'TEN')
        db.session.commit()
        assert db.session.get(Voucher, v.id).usage_count == 0


# ── 3. Self-detachment ────────────────────────────────────────────

def test_voucher_detaches_when_subtotal_drops_below_minimum(client):
    with client.application.app_context():
        p = make_product(price='600.00', rate='7')
        make_voucher(code='MIN1000', minimum_order_amount=Decimal('1000'))
        cart = apply_voucher(add_item(guest_cart(), p.id, 2), 'MIN1000')
        assert cart.discount_amount == Decimal('120.00')

        cart = update_quantity(cart, p.id, 1)      # no error raised
        assert cart.voucher_code is None
        assert cart.discount_amount == Decimal('0.00')
        assert cart.total_amount == Decimal('642.00')


def test_voucher_detaches_when_cart_becomes_empty(client):
    with client.application.app_context():
        p = make_product()
        make_voucher(code='TEN')
        cart = apply_voucher(add_item(guest_cart(), p.id, 1), 'TEN')
        cart = remove_item(cart, p.id)
        assert cart.voucher_code is None
        assert cart.subtotal_excl_tax == Decimal('0.00')
        assert cart.total_amount == Decimal('0.00')


def test_voucher_detaches_when_expired_or_deactivated(client):
    with client.application.app_context():
        p = make_product()
        v = make_voucher(code='TEN')
        cart = apply_voucher(add_item(guest_cart(), p.id, 1), 'TEN')

        totals = recalculate(cart, now=v.end_date + timedelta(seconds=1))
        assert cart.voucher_code is None
        assert totals.discount_amount == Decimal('0.00')

        cart = apply_voucher(cart, 'TEN')
        v.status = VoucherStatus.inactive
        db.session.commit()
        cart = add_item(cart, p.id, 1)
        assert cart.voucher_code is None
        assert cart.total_amount == Decimal('2140.00')


def test_voucher_detaches_when_customer_limit_used_elsewhere(client):
    with client.application.app_context():
        from storefront.auth.models import User
        u = User(username='buyer', name='Buyer')
        u.set_password('pw')
        db.session.add(u)
        db.session.commit()

        p = make_product()
        v = make_voucher(code='ONCE', usage_limit_per_customer=1)
        cart = find_or_create(user_id=u.id)
        cart = apply_voucher(add_item(cart, p.id, 1), 'ONCE', customer_id=u.id)
        assert cart.voucher_code == 'ONCE'

        record_voucher_usage(v, user_id=u.id, order_reference='OTHER-ORDER')
        cart = add_item(cart, p.id, 1)
        assert cart.voucher_code is None


# ── 4. Strategies ─────────────────────────────────────────────────

def test_default_strategy_is_blended(client):
    with client.application.app_context():
        assert isinstance(get_strategy(), BlendedRateStrategy)
        assert isinstance(get_strategy('pro_rata'), ProRataStrategy)
        with pytest.raises(ValueError):
            get_strategy('flat')


def test_blended_rate_fallback_on_zero_subtotal():
    strategy = BlendedRateStrategy(fallback_rate=Decimal('7'))
    assert strategy.blended_rate(Decimal('0'), Decimal('0')) == Decimal('7')
    assert strategy.blended_rate(Decimal('200'), Decimal('20')) == Decimal('10')


@pytest.mark.parametrize('lines, voucher', [
    ([('1000.00', '7', 1)],                      ('percentage', '10')),
    ([('1000.00', '7', 1), ('500.00', '7', 2)],  ('percentage', '25')),
    ([('200.00', '10', 3), ('50.00', '10', 1)],  ('fixed_amount', '120')),
])
def test_pro_rata_matches_blended_on_single_rate_carts(client, lines, voucher):
    with client.application.app_context():
        dtype, value = voucher
        make_voucher(code='V', discount_type=DiscountType[dtype], discount_value=Decimal(value))
        cart = guest_cart()
        for price, rate, qty in lines:
            cart = add_item(cart, make_product(price=price, rate=rate).id, qty)
        cart = apply_voucher(cart, 'V')

        blended  = recalculate(cart, strategy=BlendedRateStrategy())
        pro_rata = recalculate(cart, strategy=ProRataStrategy())
        assert pro_rata == blended


def test_pro_rata_allocation_sums_to_discount(client):
    with client.application.app_context():
        cart = guest_cart()
        for price in ('10.00', '10.00', '10.00'):
            cart = add_item(cart, make_product(price=price).id, 1)
        shares = ProRataStrategy().allocate(list(cart.items), Decimal('30.00'), Decimal('10.00'))
        assert shares == [Decimal('3.33'), Decimal('3.33'), Decimal('3.34')]
        assert sum(shares) == Decimal('10.00')


@pytest.mark.parametrize('subtotals, discount', [
    (['1.00', '1.00', '1.00', '1.00'],  '0.02'),
    (['0.01', '0.01', '100.00'],        '50.00'),
    (['3.00', '3.00', '3.00'],          '1.00'),
    (['99.99', '0.03'],                 '100.02'),
    (['0.05', '7.35', '12.60', '0.01'], '0.07'),
])
def test_pro_rata_shares_never_negative(subtotals, discount):
    """Every share is a cent amount in [0, line_subtotal] and they add up exactly."""
    items    = [SimpleNamespace(line_subtotal=Decimal(s)) for s in subtotals]
    subtotal = sum((Decimal(s) for s in subtotals), Decimal('0'))
    shares   = ProRataStrategy().allocate(items, subtotal, Decimal(discount))

    assert sum(shares) == Decimal(discount)
    for item, share in zip(items, shares):
        assert Decimal('0') <= share <= item.line_subtotal
        assert share == share.quantize(Decimal('0.01'))


def test_pro_rata_leftover_cents_go_to_later_lines_on_ties():
    items  = [SimpleNamespace(line_subtotal=Decimal('1.00')) for _ in range(4)]
    shares = ProRataStrategy().allocate(items, Decimal('4.00'), Decimal('0.02'))
    assert shares == [Decimal('0.00'), Decimal('0.00'), Decimal('0.01'), Decimal('0.01')]


def test_pro_rata_strategy_from_config(client):
    client.application.config['CART_DISCOUNT_TAX_STRATEGY'] = 'pro_rata'
    with client.application.app_context():
        a = make_product(price='1000.00', rate='7')
        b = make_product(price='500.00', rate='15')
        make_voucher(code='FIXED', discount_type=DiscountType.fixed_amount,
                     discount_value=Decimal('500'))
        cart = add_item(guest_cart(), a.id, 1)
        cart = apply_voucher(add_item(cart, b.id, 1), 'FIXED')
        # shares 333.33 / 166.67 → 666.67 × 7% + 333.33 × 15% = 46.67 + 50.00
        assert cart.total_tax == Decimal('96.67')
        assert cart.discount_amount == Decimal('500.00')
