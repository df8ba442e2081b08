"""Order Validator: 入力検証・価格計算・返却期限"""

from datetime import datetime, timedelta, timezone

import pytest

from rental.models import OrderRequestItem, Product
from rental.results import InsufficientStockError, NotFoundError, Ok, ValidationError
from rental.validator import MAX_RENTAL_DAYS, validate_order

from conftest import PERSONAL_INFO

NOW = datetime(2026, 1, 10, 9, 0, tzinfo=timezone.utc)


class DictCatalog:
    def __init__(self, *items: Product):
        self.items = {product.id: product for product in items}
        self.lookups: list[str] = []

    async def get_product(self, product_id):
        self.lookups.append(product_id)
        return self.items.get(product_id)


@pytest.fixture
def camera():
    return Product(id="cam", name="Camera", price=150000, stock=5, available=True)


@pytest.fixture
def tent():
    return Product(id="tent", name="Tent", price=200000, stock=3, available=True)


async def _validate(catalog, items, **overrides):
    kwargs = {
        "user_id": "user-1",
        "personal_info": PERSONAL_INFO,
        "payment_method": "bank-transfer",
        "shipping_method": "pickup",
        "now": NOW,
    }
    kwargs.update(overrides)
    return await validate_order(catalog, items=items, **kwargs)


class TestPricing:
    @pytest.mark.asyncio
    async def test_subtotal_is_price_times_quantity_times_days(self, camera):
        result = await _validate(
            DictCatalog(camera),
            [{"product_id": "cam", "quantity": 2, "rental_days": 3}],
        )
        assert isinstance(result, Ok)
        draft = result.value
        assert draft.items[0].price == 150000
        assert draft.items[0].subtotal == 900000
        assert draft.total == 900000

    @pytest.mark.asyncio
    async def test_total_is_sum_of_subtotals(self, camera, tent):
        result = await _validate(
            DictCatalog(camera, tent),
            [
                {"product_id": "cam", "quantity": 1, "rental_days": 2},
                {"product_id": "tent", "quantity": 2, "rental_days": 5},
            ],
        )
        draft = result.value
        assert draft.total == 150000 * 2 + 200000 * 2 * 5
        assert draft.total == sum(item.subtotal for item in draft.items)

    @pytest.mark.asyncio
    async def test_due_date_uses_longest_rental(self, camera, tent):
        result = await _validate(
            DictCatalog(camera, tent),
            [
                {"product_id": "cam", "quantity": 1, "rental_days": 2},
                {"product_id": "tent", "quantity": 1, "rental_days": 7},
            ],
        )
        assert result.value.created_at == NOW
        assert result.value.due_date == NOW + timedelta(days=7)

    @pytest.mark.asyncio
    async def test_accepts_request_item_models(self, camera):
        result = await _validate(
            DictCatalog(camera),
            [OrderRequestItem(product_id="cam", quantity=1, rental_days=1)],
        )
        assert isinstance(result, Ok)


class TestRequiredInput:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("items", [None, [], "cam", {"product_id": "cam"}])
    async def test_items_required(self, camera, items):
        result = await _validate(DictCatalog(camera), items)
        assert isinstance(result, ValidationError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "field", ["personal_info", "payment_method", "shipping_method"]
    )
    async def test_checkout_fields_required(self, camera, field):
        result = await _validate(
            DictCatalog(camera),
            [{"product_id": "cam", "quantity": 1, "rental_days": 1}],
            **{field: None},
        )
        assert isinstance(result, ValidationError)
        assert "required" in result.message

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "field, value",
        [
            ("payment_method", {"type": "card"}),
            ("shipping_method", 3),
            ("user_id", 42),
        ],
    )
    async def test_checkout_fields_must_be_strings(self, camera, field, value):
        result = await _validate(
            DictCatalog(camera),
            [{"product_id": "cam", "quantity": 1, "rental_days": 1}],
            **{field: value},
        )
        assert isinstance(result, ValidationError)

    @pytest.mark.asyncio
    async def test_user_required(self, camera):
        result = await _validate(
            DictCatalog(camera),
            [{"product_id": "cam", "quantity": 1, "rental_days": 1}],
            user_id="",
        )
        assert isinstance(result, ValidationError)

    @pytest.mark.asyncio
    async def test_personal_info_needs_name_and_email(self, camera):
        result = await _validate(
            DictCatalog(camera),
            [{"product_id": "cam", "quantity": 1, "rental_days": 1}],
            personal_info={"full_name": "Budi"},
        )
        assert isinstance(result, ValidationError)
        assert "personal_info" in result.message


class TestItemRules:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "item",
        [
            {"product_id": "cam", "quantity": 0, "rental_days": 1},
            {"product_id": "cam", "quantity": 1, "rental_days": 0},
            {"product_id": "cam", "quantity": -2, "rental_days": 3},
            {"product_id": "cam", "quantity": "many", "rental_days": 3},
            {"quantity": 1, "rental_days": 1},
        ],
    )
    async def test_malformed_item(self, camera, item):
        result = await _validate(DictCatalog(camera), [item])
        assert isinstance(result, ValidationError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("rental_days", [MAX_RENTAL_DAYS + 1, 5_000_000])
    async def test_rental_days_upper_bound(self, camera, rental_days):
        result = await _validate(
            DictCatalog(camera),
            [{"product_id": "cam", "quantity": 1, "rental_days": rental_days}],
        )
        assert isinstance(result, ValidationError)
        assert "rental_days" in result.message

    @pytest.mark.asyncio
    async def test_longest_allowed_rental(self, camera):
        result = await _validate(
            DictCatalog(camera),
            [{"product_id": "cam", "quantity": 1, "rental_days": MAX_RENTAL_DAYS}],
        )
        assert isinstance(result, Ok)
        assert result.value.due_date == NOW + timedelta(days=MAX_RENTAL_DAYS)

    @pytest.mark.asyncio
    async def test_shape_is_checked_before_any_lookup(self, camera):
        catalog = DictCatalog(camera)
        result = await _validate(
            catalog,
            [
                {"product_id": "cam", "quantity": 1, "rental_days": 1},
                {"product_id": "cam", "quantity": 0, "rental_days": 1},
            ],
        )
        assert isinstance(result, ValidationError)
        assert catalog.lookups == []

    @pytest.mark.asyncio
    async def test_missing_product(self, camera):
        result = await _validate(
            DictCatalog(camera),
            [{"product_id": "ghost", "quantity": 1, "rental_days": 1}],
        )
        assert isinstance(result, NotFoundError)
        assert "ghost" in result.message

    @pytest.mark.asyncio
    async def test_quantity_above_stock(self, tent):
        result = await _validate(
            DictCatalog(tent),
            [{"product_id": "tent", "quantity": 4, "rental_days": 1}],
        )
        assert isinstance(result, InsufficientStockError)
        assert result.product_id == "tent"
        assert "Tent" in result.message

    @pytest.mark.asyncio
    async def test_unavailable_product(self):
        hidden = Product(id="kayak", name="Kayak", price=90000, stock=4, available=False)
        result = await _validate(
            DictCatalog(hidden),
            [{"product_id": "kayak", "quantity": 1, "rental_days": 1}],
        )
        assert isinstance(result, InsufficientStockError)

    @pytest.mark.asyncio
    async def test_repeated_product_lines_are_summed(self, tent):
        result = await _validate(
            DictCatalog(tent),
            [
                {"product_id": "tent", "quantity": 2, "rental_days": 1},
                {"product_id": "tent", "quantity": 2, "rental_days": 1},
            ],
        )
        assert isinstance(result, InsufficientStockError)
