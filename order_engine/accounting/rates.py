"""
Tax and card-fee rate resolution.

Precedence: active category TaxRule -> global FinancialConfig row -> settings.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from order_engine.config.settings import AccountingSettings
from order_engine.database.models import FinancialConfig, TaxRule

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Rates:
    """Percent rates applied to the gross amount"""
    card_fee_rate: Decimal
    tax_rate: Decimal
    source: str


class RateResolver:
    """Read-only view over the rate configuration store"""

    def __init__(self, db: AsyncSession, defaults: AccountingSettings):
        self.db = db
        self.defaults = defaults

    async def resolve(self, category: Optional[str]) -> Rates:
        if category:
            result = await self.db.execute(
                select(TaxRule)
                .where(TaxRule.category == category)
                .where(TaxRule.is_active.is_(True))
            )
            rule = result.scalar_one_or_none()
            if rule is not None:
                return Rates(
                    card_fee_rate=Decimal(rule.card_fee_rate),
                    tax_rate=Decimal(rule.estimated_tax_rate),
                    source=f"tax_rule:{category}",
                )

        result = await self.db.execute(select(FinancialConfig).limit(1))
        config = result.scalars().first()
        if config is not None:
            return Rates(
                card_fee_rate=Decimal(config.default_card_fee_rate or 0),
                tax_rate=Decimal(config.default_tax_rate),
                source="financial_config",
            )

        logger.debug("No rate configuration stored, using settings defaults", category=category)
        return Rates(
            card_fee_rate=Decimal(str(self.defaults.default_card_fee_rate)),
            tax_rate=Decimal(str(self.defaults.default_tax_rate)),
            source="settings",
        )
