from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.shipping import ShippingCalculation, ShippingCarrier, ShippingMethod
from storefront.services.shipping import ShippingMethodRule, ShippingQuote


logger = logging.getLogger("storefront.shipping")


DEFAULT_CARRIERS: tuple[dict[str, Any], ...] = (
    {
        "code": "correios",
        "name": "Correios",
        "tracking_url": "https://rastreamento.correios.com.br/app/index.php?objetos={code}",
        "supported_regions": ["BR"],
        "sort_order": 1,
        "methods": (
            {
                "code": "pac",
                "name": "PAC",
                "description": "Economical delivery",
                "base_cost": Decimal("15.00"),
                "cost_per_kg": Decimal("2.00"),
                "min_days": 5,
                "max_days": 15,
                "max_weight": Decimal("30"),
                "sort_order": 1,
            },
            {
                "code": "sedex",
                "name": "SEDEX",
                "description": "Express delivery",
                "base_cost": Decimal("25.00"),
                "cost_per_kg": Decimal("3.00"),
                "min_days": 1,
                "max_days": 3,
                "max_weight": Decimal("30"),
                "sort_order": 2,
            },
            {
                "code": "mini_envios",
                "name": "Mini Envios",
                "description": "For small and light items",
                "base_cost": Decimal("10.00"),
                "cost_per_kg": Decimal("1.50"),
                "min_days": 3,
                "max_days": 7,
                "max_weight": Decimal("2"),
                "sort_order": 3,
            },
        ),
    },
)


def rule_from_model(method: ShippingMethod) -> ShippingMethodRule:
    carrier = method.carrier
    return ShippingMethodRule(
        id=method.id,
        name=method.name,
        code=method.code,
        description=method.description,
        base_cost=method.base_cost,
        cost_per_kg=method.cost_per_kg,
        min_days=method.min_days,
        max_days=method.max_days,
        carrier_code=carrier.code if carrier else "",
        carrier_name=carrier.name if carrier else "",
        active_region_codes=method.active_region_codes or (),
        carrier_region_codes=(carrier.supported_regions if carrier else None) or (),
        supported_postal_codes=method.supported_postal_codes or (),
        excluded_postal_codes=method.excluded_postal_codes or (),
        min_weight=method.min_weight,
        max_weight=method.max_weight,
        min_value=method.min_value,
        max_value=method.max_value,
        is_active=bool(method.is_active),
        carrier_active=bool(carrier.is_active) if carrier else False,
        sort_order=method.sort_order or 0,
    )


class SqlShippingMethodStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_active_methods(self) -> Sequence[ShippingMethodRule]:
        result = await self.session.execute(
            select(ShippingMethod)
            .join(ShippingCarrier, ShippingMethod.carrier_id == ShippingCarrier.id)
            .where(ShippingMethod.is_active.is_(True), ShippingCarrier.is_active.is_(True))
            .order_by(ShippingCarrier.sort_order, ShippingMethod.sort_order, ShippingMethod.name)
        )
        return [rule_from_model(method) for method in result.scalars().all()]


async def record_calculations(
    session: AsyncSession, quote: ShippingQuote, *, customer_id: Any | None = None
) -> list[ShippingCalculation]:
    """Persist one audit row per quoted option. Failed quotes record nothing."""
    if not quote.ok or not quote.options:
        return []
    rows = [
        ShippingCalculation(
            method_id=option.method_id,
            customer_id=str(customer_id) if customer_id is not None else None,
            calculated_cost=option.cost,
            estimated_days_min=option.estimated_days[0],
            estimated_days_max=option.estimated_days[1],
            weight_used=option.weight_used,
            destination_postal_code=quote.destination_postal_code,
            origin_postal_code=quote.origin_postal_code,
            approximate=option.approximate,
        )
        for option in quote.options
    ]
    session.add_all(rows)
    await session.commit()
    return rows


async def purge_calculations(session: AsyncSession, *, older_than_hours: int, now: datetime | None = None) -> int:
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(hours=int(older_than_hours))
    result = await session.execute(delete(ShippingCalculation).where(ShippingCalculation.calculated_at < cutoff))
    await session.commit()
    removed = int(result.rowcount or 0)
    logger.info("shipping_calculations_purged", extra={"removed": removed, "cutoff": cutoff.isoformat()})
    return removed


async def seed_default_carriers(session: AsyncSession) -> int:
    """Create the default carriers and methods that are missing; returns how many methods were added."""
    added = 0
    for carrier_data in DEFAULT_CARRIERS:
        carrier = (
            (await session.execute(select(ShippingCarrier).where(ShippingCarrier.code == carrier_data["code"]))).scalars().first()
        )
        if carrier is None:
            carrier = ShippingCarrier(
                code=carrier_data["code"],
                name=carrier_data["name"],
                tracking_url=carrier_data["tracking_url"],
                supported_regions=list(carrier_data["supported_regions"]),
                sort_order=carrier_data["sort_order"],
                is_active=True,
            )
            session.add(carrier)
            await session.flush()
        existing = {
            code
            for code in (
                await session.execute(select(ShippingMethod.code).where(ShippingMethod.carrier_id == carrier.id))
            ).scalars()
        }
        for method in carrier_data["methods"]:
            if method["code"] in existing:
                continue
            session.add(ShippingMethod(carrier_id=carrier.id, is_active=True, **method))
            added += 1
    await session.commit()
    logger.info("shipping_carriers_seeded", extra={"methods_added": added})
    return added
