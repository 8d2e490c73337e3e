"""
Tier resolution.

Pure mapping from a subscription snapshot and its unpaid invoices to the
canonical (plan, billing status, tier) tuple. No I/O happens here.
"""

from collections.abc import Iterable

from src.constants import UNPAID_INVOICE_STATUSES
from src.schemas.billing import (
    BillingFields,
    BillingStatus,
    InvoiceSnapshot,
    Plan,
    PriceTierTable,
    ResolvedBilling,
    SubscriptionSnapshot,
    Tier,
)

_STATUS_MAP = {
    "active": BillingStatus.ACTIVE,
    "trialing": BillingStatus.TRIALING,
    "past_due": BillingStatus.PAST_DUE,
    "canceled": BillingStatus.CANCELED,
    "unpaid": BillingStatus.CANCELED,
}

_PAID_STATUSES = frozenset({BillingStatus.ACTIVE, BillingStatus.TRIALING})

_PLAN_TIERS = {
    Plan.STANDARD: Tier.STANDARD,
    Plan.PREMIUM: Tier.PREMIUM,
}


def map_billing_status(stripe_status: str | None) -> BillingStatus:
    """Map a raw Stripe status; incomplete, incomplete_expired, paused and unknown values are canceled."""
    return _STATUS_MAP.get(stripe_status or "", BillingStatus.CANCELED)


def classify_plan(subscription: SubscriptionSnapshot, price_table: PriceTierTable) -> Plan:
    """Classify by the first line item only; no items means standard."""
    first_price = subscription.price_ids[0] if subscription.price_ids else None
    return price_table.plan_for(first_price)


def unpaid_invoices(invoices: Iterable[InvoiceSnapshot]) -> list[InvoiceSnapshot]:
    return [invoice for invoice in invoices if invoice.status in UNPAID_INVOICE_STATUSES]


def resolve(
    subscription: SubscriptionSnapshot | None,
    invoices: Iterable[InvoiceSnapshot],
    price_table: PriceTierTable,
) -> ResolvedBilling:
    """
    Derive the billing tuple for one user.

    Tier rules, in order:
        1. any open or uncollectible invoice -> free, billing status past_due
        2. billing status active or trialing -> tier equals the plan
        3. otherwise -> free

    Without a subscription the result is plan none, status none, tier free.
    """
    if subscription is None:
        return ResolvedBilling(
            fields=BillingFields(
                plan=Plan.NONE,
                status=BillingStatus.NONE,
                current_period_end=None,
                cancel_at_period_end=False,
                subscription_id=None,
                customer_id=None,
            ),
            tier=Tier.FREE,
        )

    status = map_billing_status(subscription.status)
    plan = classify_plan(subscription, price_table)
    has_unpaid = bool(unpaid_invoices(invoices))

    if has_unpaid:
        status = BillingStatus.PAST_DUE
        tier = Tier.FREE
    elif status in _PAID_STATUSES:
        tier = _PLAN_TIERS[plan]
    else:
        tier = Tier.FREE

    return ResolvedBilling(
        fields=BillingFields(
            plan=plan,
            status=status,
            current_period_end=subscription.current_period_end,
            cancel_at_period_end=subscription.cancel_at_period_end,
            subscription_id=subscription.id,
            customer_id=subscription.customer_id,
        ),
        tier=tier,
        has_unpaid_invoices=has_unpaid,
    )
