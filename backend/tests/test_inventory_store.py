"""
Inventory store tests: filters, ordering, soft delete and validation for
products and the reference records (categories, suppliers, customers).
"""
from datetime import datetime

import pytest
from sqlalchemy import update

from stockbook.errors import NotFoundError, ValidationError
from stockbook.models import Product


def _set_created_at(session, product, when):
    session.execute(update(Product).where(Product.id == product.id).values(created_at=when))
    session.commit()
    session.expire_all()


class TestProductCreate:
    def test_create_sets_defaults_and_initial_stock(self, products):
        product = products.create({"sku": "MILK-1L", "name": "Milk 1L", "price_cents": 5500, "stock_qty": 24})

        assert product.id
        assert product.stock_qty == 24
        assert product.initial_stock_qty == 24
        assert product.low_stock_threshold == 10
        assert product.unit == "pcs"
        assert product.is_active is True
        assert product.deleted_at is None

    def test_missing_required_fields(self, products):
        with pytest.raises(ValidationError) as exc:
            products.create({"price_cents": 100})
        assert exc.value.fields == {"name": "required", "sku": "required"}

    def test_duplicate_sku_rejected(self, products):
        products.create({"sku": "DUP", "name": "First"})
        with pytest.raises(ValidationError) as exc:
            products.create({"sku": "DUP", "name": "Second"})
        assert exc.value.fields == {"sku": "duplicate"}

    def test_sku_of_deleted_product_is_still_taken(self, products):
        first = products.create({"sku": "GONE", "name": "Gone"})
        products.soft_delete(first.id)
        with pytest.raises(ValidationError):
            products.create({"sku": "GONE", "name": "Again"})

    def test_unknown_field_rejected(self, products):
        with pytest.raises(ValidationError) as exc:
            products.create({"sku": "X", "name": "X", "colour": "red"})
        assert exc.value.fields == {"colour": "not allowed"}

    def test_float_price_rejected(self, products):
        with pytest.raises(ValidationError):
            products.create({"sku": "X", "name": "X", "price_cents": 12.5})

    @pytest.mark.parametrize("field,value", [
        ("price_cents", -1),
        ("tax_rate_bps", 10001),
        ("low_stock_threshold", -5),
    ])
    def test_business_rules(self, products, field, value):
        with pytest.raises(ValidationError) as exc:
            products.create({"sku": "RULE", "name": "Rule", field: value})
        assert field in exc.value.fields

    def test_unknown_category_reference(self, products):
        with pytest.raises(ValidationError) as exc:
            products.create({"sku": "X", "name": "X", "category_id": "nope"})
        assert exc.value.fields == {"category_id": "unknown reference"}


class TestProductUpdate:
    def test_partial_update(self, products, make_product):
        product = make_product(name="Old name", price_cents=100)
        updated = products.update(product.id, {"name": "New name"})
        assert updated.name == "New name"
        assert updated.price_cents == 100
        assert updated.updated_at is not None

    def test_stock_qty_cannot_be_edited(self, products, make_product):
        product = make_product(stock_qty=5)
        with pytest.raises(ValidationError) as exc:
            products.update(product.id, {"stock_qty": 50})
        assert exc.value.fields == {"stock_qty": "use stock movements"}
        assert products.get(product.id).stock_qty == 5

    def test_sku_is_immutable(self, products, make_product):
        product = make_product()
        with pytest.raises(ValidationError):
            products.update(product.id, {"sku": "OTHER"})

    def test_update_deleted_product_is_not_found(self, products, make_product):
        product = make_product()
        products.soft_delete(product.id)
        with pytest.raises(NotFoundError):
            products.update(product.id, {"name": "Ghost"})


class TestProductList:
    def test_newest_first(self, db_session, products, make_product):
        a = make_product(name="A")
        b = make_product(name="B")
        c = make_product(name="C")
        _set_created_at(db_session, a, datetime(2024, 1, 1))
        _set_created_at(db_session, b, datetime(2024, 1, 3))
        _set_created_at(db_session, c, datetime(2024, 1, 2))

        assert [p.name for p in products.list()] == ["B", "C", "A"]

    def test_search_matches_name_sku_and_barcode(self, products, make_product):
        make_product(sku="TEA-01", name="Green Tea")
        make_product(sku="COF-01", name="Coffee", barcode="8901234")
        make_product(sku="SUG-01", name="Sugar")

        assert {p.sku for p in products.list({"search": "tea"})} == {"TEA-01"}
        assert {p.sku for p in products.list({"search": "cof-"})} == {"COF-01"}
        assert {p.sku for p in products.list({"search": "8901"})} == {"COF-01"}

    def test_search_treats_wildcards_literally(self, products, make_product):
        make_product(name="100% Juice")
        make_product(name="Juice")
        assert [p.name for p in products.list({"search": "100%"})] == ["100% Juice"]

    def test_filters_are_and_combined(self, products, categories, make_product):
        snacks = categories.create({"name": "Snacks"})
        drinks = categories.create({"name": "Drinks"})
        make_product(name="Chips", category_id=snacks.id)
        make_product(name="Cola", category_id=drinks.id)
        make_product(name="Cola Chips", category_id=snacks.id, is_active=False)

        result = products.list({"categoryId": snacks.id, "search": "chips", "isActive": "true"})
        assert [p.name for p in result] == ["Chips"]

    def test_deleted_products_are_hidden(self, products, make_product):
        kept = make_product()
        gone = make_product()
        products.soft_delete(gone.id)

        assert [p.id for p in products.list()] == [kept.id]

    def test_unknown_filter_rejected(self, products):
        with pytest.raises(ValidationError):
            products.list({"colour": "red"})

    def test_empty_filter_values_are_ignored(self, products, make_product):
        make_product()
        assert len(products.list({"search": "", "category_id": None})) == 1


class TestSoftDelete:
    def test_get_hides_and_resolve_keeps(self, products, make_product):
        product = make_product()
        products.soft_delete(product.id)

        assert products.get(product.id) is None
        resolved = products.resolve(product.id)
        assert resolved.is_deleted is True
        assert resolved.to_dict()["is_deleted"] is True

    def test_soft_delete_is_idempotent(self, products, make_product):
        product = make_product()
        first = products.soft_delete(product.id).deleted_at
        second = products.soft_delete(product.id).deleted_at
        assert first is not None
        assert first == second

    def test_soft_delete_unknown_id(self, products):
        with pytest.raises(NotFoundError):
            products.soft_delete("does-not-exist")

    def test_resolve_unknown_id(self, products):
        assert products.resolve("does-not-exist") is None


class TestReferenceRecords:
    def test_categories_sorted_by_name(self, categories):
        categories.create({"name": "beverages"})
        categories.create({"name": "Dairy"})
        categories.create({"name": "Bakery"})

        assert [c.name for c in categories.list()] == ["Bakery", "beverages", "Dairy"]

    def test_supplier_search_by_phone(self, suppliers):
        suppliers.create({"name": "Acme Wholesale", "phone": "555-0101"})
        suppliers.create({"name": "Best Foods", "phone": "555-0202"})
        assert [s.name for s in suppliers.list({"search": "0202"})] == ["Best Foods"]

    def test_customer_crud(self, customers):
        customer = customers.create({"name": "Asha", "email": "asha@example.com"})
        customers.update(customer.id, {"phone": "98450"})
        assert customers.get(customer.id).phone == "98450"

        customers.soft_delete(customer.id)
        assert customers.list() == []
        assert customers.resolve(customer.id).name == "Asha"

    def test_category_filter_not_supported(self, customers):
        with pytest.raises(ValidationError):
            customers.list({"category_id": "x"})

    def test_deleted_category_keeps_products_resolvable(self, categories, products, make_product):
        category = categories.create({"name": "Seasonal"})
        product = make_product(category_id=category.id)
        categories.soft_delete(category.id)

        assert products.get(product.id).category_id == category.id
        assert categories.resolve(category.id).is_deleted is True


def test_search_and_active_flag(products):
    products.create({"sku": "A1", "name": "Red Pen", "is_active": True})
    products.create({"sku": "B2", "name": "Blue Pen", "is_active": False})

    assert [p.sku for p in products.list({"search": "pen", "isActive": True})] == ["A1"]


@pytest.mark.parametrize("filters", ["pen", ["search", "pen"], 3])
def test_filter_must_be_a_mapping(products, filters):
    with pytest.raises(ValidationError) as exc:
        products.list(filters)
    assert exc.value.fields == {"filter": "invalid"}
