from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable

from storefront.core import metrics
from storefront.core.config import Settings, settings as default_settings
from storefront.services import pricing
from storefront.services.cart import CartSnapshot
from storefront.services.postal import PostalCodeResolver, is_valid_postal_code, normalize_postal_code
from storefront.services.stores import ShippingMethodStore


logger = logging.getLogger("storefront.shipping")

NATIONWIDE_REGION = "BR"


class ShippingError(str, enum.Enum):
    no_coverage = "NO_COVERAGE"
    invalid_destination = "INVALID_DESTINATION"
    empty_cart = "EMPTY_CART"
    calculation_degraded = "CALCULATION_DEGRADED"

    @property
    def message(self) -> str:
        return _ERROR_MESSAGES[self]


_ERROR_MESSAGES: dict[ShippingError, str] = {
    ShippingError.no_coverage: "No shipping method serves this destination",
    ShippingError.invalid_destination: "Destination postal code must have 8 digits",
    ShippingError.empty_cart: "Cannot calculate shipping for an empty cart",
    ShippingError.calculation_degraded: "Shipping costs are approximate; the postal lookup is unavailable",
}


def _codes(values: Iterable[Any] | None) -> frozenset[str]:
    return frozenset(str(value).strip().upper() for value in (values or ()) if str(value).strip())


@dataclass(frozen=True)
class ShippingMethodRule:
    """Storage-independent view of a carrier's shipping method."""

    id: Any
    name: str
    base_cost: Decimal
    cost_per_kg: Decimal
    min_days: int
    max_days: int
    carrier_code: str = ""
    carrier_name: str = ""
    code: str | None = None
    description: str | None = None
    active_region_codes: frozenset[str] = field(default_factory=frozenset)
    carrier_region_codes: frozenset[str] = field(default_factory=frozenset)
    supported_postal_codes: tuple[str, ...] = ()
    excluded_postal_codes: tuple[str, ...] = ()
    min_weight: Decimal | None = None
    max_weight: Decimal | None = None
    min_value: Decimal | None = None
    max_value: Decimal | None = None
    is_active: bool = True
    carrier_active: bool = True
    sort_order: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "base_cost", Decimal(str(self.base_cost)))
        object.__setattr__(self, "cost_per_kg", Decimal(str(self.cost_per_kg)))
        for name in ("min_weight", "max_weight", "min_value", "max_value"):
            raw = getattr(self, name)
            if raw is not None:
                object.__setattr__(self, name, Decimal(str(raw)))
        object.__setattr__(self, "active_region_codes", _codes(self.active_region_codes))
        object.__setattr__(self, "carrier_region_codes", _codes(self.carrier_region_codes))
        object.__setattr__(self, "supported_postal_codes", tuple(self.supported_postal_codes or ()))
        object.__setattr__(self, "excluded_postal_codes", tuple(self.excluded_postal_codes or ()))
        if self.base_cost < 0 or self.cost_per_kg < 0:
            raise ValueError(f"Shipping method {self.name} has a negative cost")
        if int(self.min_days) > int(self.max_days):
            raise ValueError(f"Shipping method {self.name} has min_days above max_days")


@dataclass(frozen=True)
class PackageMetrics:
    total_weight: Decimal
    length_cm: Decimal
    width_cm: Decimal
    height_cm: Decimal

    @property
    def volume_m3(self) -> Decimal:
        return self.length_cm * self.width_cm * self.height_cm / Decimal("1000000")


@dataclass(frozen=True)
class ShippingOption:
    method_id: Any
    carrier: str
    method_name: str
    cost: Decimal
    estimated_days: tuple[int, int]
    weight_used: Decimal
    destination_postal_code: str
    approximate: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "method_id": str(self.method_id),
            "carrier": self.carrier,
            "method_name": self.method_name,
            "cost": self.cost,
            "estimated_days": {"min": self.estimated_days[0], "max": self.estimated_days[1]},
            "weight_used": self.weight_used,
            "destination_postal_code": self.destination_postal_code,
            "approximate": self.approximate,
        }


@dataclass(frozen=True)
class ShippingQuote:
    destination_postal_code: str
    options: tuple[ShippingOption, ...] = ()
    error: ShippingError | None = None
    warning: ShippingError | None = None
    approximate: bool = False
    region_code: str | None = None
    origin_postal_code: str | None = None
    package: PackageMetrics | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def message(self) -> str:
        if self.error is not None:
            return self.error.message
        if self.warning is not None:
            return self.warning.message
        return "Shipping options calculated"

    def to_envelope(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "destination_postal_code": self.destination_postal_code,
            "region_code": self.region_code,
            "approximate": self.approximate,
            "options": [option.as_dict() for option in self.options],
        }
        if self.package is not None:
            data["weight_used"] = self.package.total_weight
        if self.error is not None:
            data["error"] = self.error.value
        if self.warning is not None:
            data["warning"] = self.warning.value
        return {"success": self.ok, "message": self.message, "data": data}


def package_metrics(cart: CartSnapshot, config: Settings | None = None) -> PackageMetrics:
    """Aggregate weight and an approximate box for the cart.

    Lines without a weight use the configured default per-item weight. Box
    dimensions are not tracked per product, so every line is a default box:
    the package takes the longest and tallest box and stacks widths.
    """
    config = config or default_settings
    default_weight = Decimal(config.default_item_weight_kg)
    total_weight = Decimal("0")
    length = Decimal("0")
    width = Decimal("0")
    height = Decimal("0")
    for item in cart.items:
        weight = item.weight if item.weight is not None else default_weight
        total_weight += weight * item.quantity
        length = max(length, Decimal(config.default_box_length_cm))
        width += Decimal(config.default_box_width_cm)
        height = max(height, Decimal(config.default_box_height_cm))
    return PackageMetrics(total_weight=total_weight, length_cm=length, width_cm=width, height_cm=height)


def _matches_postal_pattern(postal_code: str, pattern: str) -> bool:
    pattern = (pattern or "").strip()
    if not pattern:
        return False
    if pattern.endswith("*"):
        return postal_code.startswith(normalize_postal_code(pattern[:-1]))
    start, sep, end = pattern.partition("-")
    start, end = normalize_postal_code(start), normalize_postal_code(end)
    # "01310000-01310999" is a range; "01310-100" is a single formatted CEP.
    if sep and len(start) == 8 and len(end) == 8:
        return start <= postal_code <= end
    return normalize_postal_code(pattern) == postal_code


def _region_allowed(codes: frozenset[str], region_code: str | None) -> bool:
    if not codes or NATIONWIDE_REGION in codes:
        return True
    return region_code is not None and region_code.upper() in codes


def method_serves(method: ShippingMethodRule, *, postal_code: str, region_code: str | None) -> bool:
    if any(_matches_postal_pattern(postal_code, pattern) for pattern in method.excluded_postal_codes):
        return False
    if method.supported_postal_codes and not any(
        _matches_postal_pattern(postal_code, pattern) for pattern in method.supported_postal_codes
    ):
        return False
    return _region_allowed(method.carrier_region_codes, region_code) and _region_allowed(
        method.active_region_codes, region_code
    )


def method_handles_weight(method: ShippingMethodRule, weight: Decimal) -> bool:
    if method.min_weight is not None and weight < method.min_weight:
        return False
    if method.max_weight is not None and weight > method.max_weight:
        return False
    return True


def method_handles_value(method: ShippingMethodRule, order_value: Decimal) -> bool:
    # A zero bound means no bound.
    if method.min_value and order_value < method.min_value:
        return False
    if method.max_value and order_value > method.max_value:
        return False
    return True


def method_cost(method: ShippingMethodRule, weight: Decimal) -> Decimal:
    return pricing.quantize_money(method.base_cost + method.cost_per_kg * weight)


def quote_options(
    methods: Iterable[ShippingMethodRule],
    *,
    postal_code: str,
    region_code: str | None,
    weight: Decimal,
    order_value: Decimal | None = None,
    approximate: bool = False,
) -> list[ShippingOption]:
    options: list[tuple[ShippingOption, str]] = []
    for method in methods:
        if not (method.is_active and method.carrier_active):
            continue
        if not method_serves(method, postal_code=postal_code, region_code=region_code):
            continue
        if not method_handles_weight(method, weight):
            continue
        if order_value is not None and not method_handles_value(method, order_value):
            continue
        option = ShippingOption(
            method_id=method.id,
            carrier=method.carrier_name or method.carrier_code,
            method_name=method.name,
            cost=method_cost(method, weight),
            estimated_days=(int(method.min_days), int(method.max_days)),
            weight_used=weight,
            destination_postal_code=postal_code,
            approximate=approximate,
        )
        options.append((option, method.name))
    options.sort(key=lambda pair: (pair[0].cost, pair[0].estimated_days[0], pair[1]))
    return [option for option, _ in options]


async def calculate(
    cart: CartSnapshot,
    destination: str,
    origin_postal_code: str | None = None,
    *,
    methods: ShippingMethodStore,
    resolver: PostalCodeResolver,
    config: Settings | None = None,
) -> ShippingQuote:
    """Price every shipping method that serves the destination, cheapest first.

    Returned costs are always the carriers' true costs; free-shipping coupons
    are applied by the total composer, not here.
    """
    config = config or default_settings
    metrics.record_shipping_quote()
    postal_code = normalize_postal_code(destination)
    if not is_valid_postal_code(postal_code):
        return ShippingQuote(destination_postal_code=postal_code, error=ShippingError.invalid_destination)
    if cart.is_empty:
        return ShippingQuote(destination_postal_code=postal_code, error=ShippingError.empty_cart)

    origin = normalize_postal_code(origin_postal_code or config.store_postal_code)
    if not is_valid_postal_code(origin):
        logger.warning("invalid_origin_postal_code", extra={"origin_postal_code": origin})
        origin = normalize_postal_code(config.store_postal_code)

    package = package_metrics(cart, config)
    region = await resolver.resolve(postal_code)
    if region.approximate:
        metrics.record_shipping_degraded()

    options = quote_options(
        await methods.list_active_methods(),
        postal_code=postal_code,
        region_code=region.region_code,
        weight=package.total_weight,
        order_value=cart.subtotal,
        approximate=region.approximate,
    )
    if not options:
        logger.info("shipping_no_coverage", extra={"postal_code": postal_code, "region_code": region.region_code})
        return ShippingQuote(
            destination_postal_code=postal_code,
            error=ShippingError.no_coverage,
            approximate=region.approximate,
            region_code=region.region_code,
            origin_postal_code=origin,
            package=package,
        )

    return ShippingQuote(
        destination_postal_code=postal_code,
        options=tuple(options),
        warning=ShippingError.calculation_degraded if region.approximate else None,
        approximate=region.approximate,
        region_code=region.region_code,
        origin_postal_code=origin,
        package=package,
    )


def select_option(quote: ShippingQuote, method_id: Any) -> ShippingOption | None:
    if method_id is None:
        return None
    wanted = str(method_id)
    return next((option for option in quote.options if str(option.method_id) == wanted), None)
