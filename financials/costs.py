"""Cost of goods resolution.

One resolver is shared by every aggregation. A line item's unit cost is
resolved in this order:

1. unit_cost of the matching product variant (same store; product matched
   by external_item_id first, else by variant SKU)
2. category rate x unit_price, using the matched product's category, or the
   line item's own category when no product matched
3. DEFAULT_COGS_RATE x unit_price

Several products can carry the same SKU. The match is then the product with
the lowest external_product_id (numeric ids compare numerically), and within
it the first variant in source order.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from core.models import LineItem, Order, Product, Variant

CATEGORY_COGS_RATES: Dict[str, Decimal] = {
    "Eyeglasses": Decimal("0.50"),
    "Sunglasses": Decimal("0.55"),
    "Contact Lenses": Decimal("0.60"),
    "Accessories": Decimal("0.65"),
}
DEFAULT_COGS_RATE = Decimal("0.60")

StoreKey = Tuple[str, str]


class CostSource(str, Enum):
    """Which level of the hierarchy produced a unit cost."""
    VARIANT_COST = "variant_cost"
    CATEGORY_RATE = "category_rate"
    DEFAULT_RATE = "default_rate"


@dataclass(frozen=True)
class ResolvedCost:
    unit_cost: Decimal
    source: CostSource
    product_id: Optional[str] = None


def product_id_sort_key(product_id: str) -> Tuple[int, int, str]:
    if product_id.isdigit():
        return (0, int(product_id), product_id)
    return (1, 0, product_id)


class CostResolver:
    """Resolves line-item unit costs against a set of products.

    Usage:
        resolver = CostResolver(products)
        cost = resolver.order_cost(order)
    """

    def __init__(self, products: Iterable[Product]):
        self._by_id: Dict[Tuple[StoreKey, str], Product] = {}
        self._by_sku: Dict[Tuple[StoreKey, str], Tuple[Product, Variant]] = {}

        ordered = sorted(products, key=lambda p: (p.store_key, product_id_sort_key(p.external_product_id)))
        for product in ordered:
            self._by_id[(product.store_key, product.external_product_id)] = product
            for variant in product.variants:
                if variant.sku:
                    # First writer wins: lowest product id, then variant position
                    self._by_sku.setdefault((product.store_key, variant.sku), (product, variant))

    def match(self, store_key: StoreKey, line: LineItem) -> Tuple[Optional[Product], Optional[Variant]]:
        """The product and variant a line item refers to, if any."""
        if line.external_item_id:
            product = self._by_id.get((store_key, line.external_item_id))
            if product is not None:
                return product, self._pick_variant(product, line)
        if line.sku:
            found = self._by_sku.get((store_key, line.sku))
            if found is not None:
                return found
        return None, None

    @staticmethod
    def _pick_variant(product: Product, line: LineItem) -> Optional[Variant]:
        if not product.variants:
            return None
        if line.external_variant_id:
            for variant in product.variants:
                if variant.external_variant_id == line.external_variant_id:
                    return variant
        if line.sku:
            for variant in product.variants:
                if variant.sku == line.sku:
                    return variant
        return product.variants[0]

    def resolve(self, store_key: StoreKey, line: LineItem) -> ResolvedCost:
        product, variant = self.match(store_key, line)
        product_id = product.external_product_id if product else None

        if variant is not None and variant.unit_cost is not None:
            return ResolvedCost(variant.unit_cost, CostSource.VARIANT_COST, product_id)

        category = product.category if product is not None else line.category
        if category in CATEGORY_COGS_RATES:
            return ResolvedCost(line.unit_price * CATEGORY_COGS_RATES[category], CostSource.CATEGORY_RATE, product_id)

        return ResolvedCost(line.unit_price * DEFAULT_COGS_RATE, CostSource.DEFAULT_RATE, product_id)

    def line_cost(self, store_key: StoreKey, line: LineItem) -> Decimal:
        return self.resolve(store_key, line).unit_cost * line.quantity

    def line_profit(self, store_key: StoreKey, line: LineItem) -> Decimal:
        return (line.unit_price - self.resolve(store_key, line).unit_cost) * line.quantity

    def order_cost(self, order: Order) -> Decimal:
        """Sum of resolved line costs; flat default rate for orders without lines."""
        if not order.line_items:
            return order.total_price * DEFAULT_COGS_RATE
        return sum((self.line_cost(order.store_key, line) for line in order.line_items), Decimal("0"))

    def order_line_revenue(self, order: Order) -> Decimal:
        """Revenue of an order's lines; total_price for orders without lines."""
        if not order.line_items:
            return order.total_price
        return sum((line.line_revenue for line in order.line_items), Decimal("0"))
