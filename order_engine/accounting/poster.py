"""
Accounting Poster

Records exactly one revenue FinancialTransaction per order:

    card_fee_estimate = gross_amount * card_fee_rate / 100
    tax_provision     = gross_amount * tax_rate / 100
    net_profit        = gross_amount - cost_of_goods - card_fee_estimate - tax_provision

Amounts are rounded half-up to cents once, at insert, and never recomputed.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple
import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from order_engine.accounting.rates import RateResolver, Rates
from order_engine.config.settings import AccountingSettings
from order_engine.database.models import FinancialTransaction, NormalizedOrder, TransactionKind
from order_engine.database.statements import insert_if_absent

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")


def to_cents(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PostingAmounts:
    gross_amount: Decimal
    cost_of_goods: Decimal
    card_fee_estimate: Decimal
    tax_provision: Decimal
    net_profit: Decimal


def compute_amounts(gross_amount: Decimal, cost_of_goods: Decimal, rates: Rates) -> PostingAmounts:
    """Derive fee, tax and net profit from the gross amount and cost basis."""
    gross = to_cents(gross_amount)
    cost = to_cents(cost_of_goods)
    card_fee = to_cents(gross * rates.card_fee_rate / 100)
    tax = to_cents(gross * rates.tax_rate / 100)
    return PostingAmounts(
        gross_amount=gross,
        cost_of_goods=cost,
        card_fee_estimate=card_fee,
        tax_provision=tax,
        net_profit=gross - cost - card_fee - tax,
    )


def describe_order(order: NormalizedOrder) -> str:
    """'Pedido #<number> - <customer> - <item, item>'"""
    names = ", ".join(item.get("name") or "" for item in (order.line_items or []) if item.get("name"))
    customer = order.customer_name or "Cliente"
    return f"Pedido #{order.order_number or order.external_order_id} - {customer} - {names or 'Pedido Nuvemshop'}"


class AccountingPoster:
    """
    Revenue poster bound to one session.

    Example:
        poster = AccountingPoster(db, settings.accounting)
        tx_id, created = await poster.post(order, Decimal("100.00"))
    """

    def __init__(self, db: AsyncSession, settings: AccountingSettings, rates: Optional[RateResolver] = None):
        self.db = db
        self.settings = settings
        self.rates = rates or RateResolver(db, settings)

    async def existing(self, related_order_id: str) -> Optional[FinancialTransaction]:
        result = await self.db.execute(
            select(FinancialTransaction)
            .where(FinancialTransaction.kind == TransactionKind.REVENUE)
            .where(FinancialTransaction.source == self.settings.source)
            .where(FinancialTransaction.related_order_id == related_order_id)
        )
        return result.scalar_one_or_none()

    async def post(
        self,
        order: NormalizedOrder,
        cost_basis_total: Decimal,
        category: Optional[str] = None,
        payment_method: Optional[str] = None,
        transaction_date: Optional[date] = None,
    ) -> Tuple[uuid.UUID, bool]:
        """
        Post the revenue transaction for `order`.

        Returns:
            (transaction id, created). created=False when the order was
            already posted; the stored row is returned unchanged.
        """
        found = await self.existing(order.external_order_id)
        if found is not None:
            logger.info(
                "Transaction already exists for order",
                external_order_id=order.external_order_id,
                transaction_id=str(found.id),
            )
            return found.id, False

        category = category or self.settings.default_category
        rates = await self.rates.resolve(category)
        amounts = compute_amounts(order.total_amount, cost_basis_total, rates)

        transaction_id = await insert_if_absent(
            self.db,
            FinancialTransaction,
            values={
                "id": uuid.uuid4(),
                "kind": TransactionKind.REVENUE,
                "source": self.settings.source,
                "related_order_id": order.external_order_id,
                "description": describe_order(order),
                "gross_amount": amounts.gross_amount,
                "cost_of_goods": amounts.cost_of_goods,
                "card_fee_estimate": amounts.card_fee_estimate,
                "tax_provision": amounts.tax_provision,
                "net_profit": amounts.net_profit,
                "cost_center": self.settings.cost_center,
                "category": category,
                "payment_method": payment_method or self.settings.default_payment_method,
                "customer_email": order.customer_email,
                "transaction_date": transaction_date or date.today(),
            },
            conflict_columns=["kind", "source", "related_order_id"],
        )

        if transaction_id is None:
            # lost the race to a concurrent delivery
            found = await self.existing(order.external_order_id)
            return found.id, False

        logger.info(
            "Revenue transaction posted",
            external_order_id=order.external_order_id,
            transaction_id=str(transaction_id),
            gross_amount=str(amounts.gross_amount),
            cost_of_goods=str(amounts.cost_of_goods),
            net_profit=str(amounts.net_profit),
            rate_source=rates.source,
        )
        return transaction_id, True
