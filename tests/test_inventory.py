"""
Products and sales: stock never goes negative, sales snapshot prices.
"""

from __future__ import annotations

import pytest

from Gym_Manager.data.repositories import products_repo
from Gym_Manager.domain.errors import InsufficientStock, RecordNotFound, ValidationFailed


def test_add_and_update_product(service, make_product):
    bar = make_product("Protein bar", quantity=10)
    assert service.list_products() == [bar]

    updated = service.update_product(bar.id, {"selling_price": 175, "description": "Chocolate"})
    assert updated.selling_price == 175
    assert updated.description == "Chocolate"
    assert updated.quantity == 10


def test_product_validation(service):
    with pytest.raises(ValidationFailed):
        service.add_product({"name": "Bad", "quantity": -1, "purchase_price": 1, "selling_price": 2})
    with pytest.raises(ValidationFailed):
        service.add_product({"name": "", "purchase_price": 1, "selling_price": 2})
    assert service.list_products() == []


def test_selling_more_than_stock_fails_cleanly(service, make_product):
    p = make_product(quantity=3)
    with pytest.raises(InsufficientStock) as info:
        service.sell_product(p.id, 5)
    assert info.value.available == 3
    assert service.get_product(p.id).quantity == 3
    assert service.list_sales() == []
    assert service.adapter.connection.execute("SELECT COUNT(*) FROM sales").fetchone()[0] == 0


def test_sales_decrement_stock_until_empty(service, make_product):
    p = make_product(quantity=10)
    sold = 0
    for q in (3, 4, 5, 2, 1):
        try:
            service.sell_product(p.id, q)
            sold += q
        except InsufficientStock:
            pass
    assert sold == 10
    assert service.get_product(p.id).quantity == 0
    assert sum(s.quantity_sold for s in service.list_sales()) == 10


def test_sale_quantity_must_be_positive(service, make_product):
    p = make_product()
    with pytest.raises(ValidationFailed):
        service.sell_product(p.id, 0)
    with pytest.raises(ValidationFailed):
        service.sell_product(p.id, "two")


def test_sale_profit_uses_price_snapshot(service, make_product, clock):
    p = make_product(purchase_price=100, selling_price=150)
    sale = service.sell_product(p.id, 4)
    assert sale.profit == (150 - 100) * 4
    assert sale.product_name == p.name
    assert sale.sale_date == "2024-01-10T09:30:00"

    service.update_product(p.id, {"selling_price": 300, "purchase_price": 50})
    service.reload()
    assert service.list_sales()[0].profit == 200
    assert service.list_sales()[0].selling_price == 150


def test_sale_outlives_deleted_product(service, make_product):
    p = make_product()
    sale = service.sell_product(p.id, 1)
    service.delete_product(p.id)

    assert service.get_product(p.id) is None
    service.reload()
    assert service.list_sales() == [sale]
    with pytest.raises(RecordNotFound):
        service.sell_product(p.id, 1)


def test_non_numeric_product_id_is_not_found(service, make_product):
    make_product()
    assert service.get_product("x") is None
    with pytest.raises(RecordNotFound):
        service.sell_product("x", 1)


def test_restock(service, make_product):
    p = make_product(quantity=2)
    assert service.restock_product(p.id, 8).quantity == 10
    with pytest.raises(ValidationFailed):
        service.restock_product(p.id, -3)


def test_stock_guard_in_sql(adapter, service, make_product):
    p = make_product(quantity=2)
    with adapter.transaction() as conn:
        assert products_repo.decrement_quantity(conn, p.id, 3) is False
        assert products_repo.decrement_quantity(conn, p.id, 2) is True
        assert products_repo.decrement_quantity(conn, p.id, 1) is False


def test_stale_cache_cannot_oversell(adapter, service, make_product):
    p = make_product(quantity=2)
    # Stock drained behind the cache's back
    with adapter.transaction() as conn:
        conn.execute("UPDATE products SET quantity = 0 WHERE id = ?", (p.id,))

    with pytest.raises(InsufficientStock) as info:
        service.sell_product(p.id, 1)
    assert info.value.available == 0
    assert adapter.connection.execute("SELECT COUNT(*) FROM sales").fetchone()[0] == 0


def test_inventory_value(service, make_product):
    make_product("A", quantity=2, purchase_price=100)
    make_product("B", quantity=3, purchase_price=10)
    assert service.inventory_value() == 230
