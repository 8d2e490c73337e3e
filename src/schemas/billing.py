"""Billing domain types shared by the reconciliation engine, routes and scripts."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class BillingStatus(str, Enum):  # noqa: UP042
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    NONE = "none"


class Plan(str, Enum):  # noqa: UP042
    STANDARD = "standard"
    PREMIUM = "premium"
    NONE = "none"


class Tier(str, Enum):  # noqa: UP042
    FREE = "free"
    STANDARD = "standard"
    PREMIUM = "premium"


class LookupMethod(str, Enum):  # noqa: UP042
    """How the subscription was located; reported back to callers."""

    EXPLICIT = "explicit"
    SUBSCRIPTION_ID = "subscription_id"
    CUSTOMER_ID = "customer_id"
    CUSTOMER_ID_TRIALING = "customer_id_trialing"
    EMAIL_LOOKUP = "email_lookup"
    EMAIL_LOOKUP_TRIALING = "email_lookup_trialing"


class SyncReason(str, Enum):  # noqa: UP042
    NO_USER = "no_user"
    NO_SUBSCRIPTION_FOUND = "no_subscription_found"


class TierResetReason(str, Enum):  # noqa: UP042
    UNPAID_INVOICES = "unpaid_invoices"
    MANUAL_SYNC = "manual_sync"


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """Read-only view of a Stripe subscription at the moment it was fetched."""

    id: str
    customer_id: str | None
    status: str
    price_ids: tuple[str, ...] = ()
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class InvoiceSnapshot:
    id: str
    status: str
    amount_due: int = 0
    currency: str = "usd"


@dataclass(frozen=True)
class CustomerSnapshot:
    id: str
    email: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PriceTierTable:
    """Maps configured price ids to plans. Unknown ids classify as standard."""

    premium_price_ids: frozenset[str] = frozenset()
    standard_price_ids: frozenset[str] = frozenset()

    def plan_for(self, price_id: str | None) -> Plan:
        if price_id and price_id in self.premium_price_ids:
            return Plan.PREMIUM
        return Plan.STANDARD

    def is_known(self, price_id: str) -> bool:
        return price_id in self.premium_price_ids or price_id in self.standard_price_ids


@dataclass(frozen=True)
class BillingFields:
    """The owned billing fields written to both stores."""

    plan: Plan
    status: BillingStatus
    current_period_end: datetime | None
    cancel_at_period_end: bool
    subscription_id: str | None
    customer_id: str | None


@dataclass(frozen=True)
class ResolvedBilling:
    """Canonical outcome of tier resolution for one snapshot."""

    fields: BillingFields
    tier: Tier
    has_unpaid_invoices: bool = False

    @property
    def billing_status(self) -> BillingStatus:
        return self.fields.status


@dataclass(frozen=True)
class WriteReport:
    durable_updated: bool
    cache_updated: bool
    cache_error: str | None = None


@dataclass(frozen=True)
class ReconciliationContext:
    """Everything known about a user before any provider call is made."""

    user_id: str
    subscription_id: str | None = None
    customer_id: str | None = None
    email: str | None = None
    subscription: SubscriptionSnapshot | None = None


@dataclass(frozen=True)
class ReconciliationOutcome:
    state: str
    found: bool
    method: LookupMethod | None = None
    subscription_status: str | None = None
    resolved: ResolvedBilling | None = None
    write: WriteReport | None = None
    reason: SyncReason | None = None


class BillingSyncResponse(BaseModel):
    """Response body of POST /api/billing/sync."""

    synced: bool
    method: str | None = None
    status: str | None = None
    reason: str | None = None
    cancelAtPeriodEnd: bool | None = None  # noqa: N815

    @classmethod
    def from_outcome(cls, outcome: ReconciliationOutcome) -> "BillingSyncResponse":
        if not outcome.found:
            return cls(synced=False, reason=outcome.reason.value if outcome.reason else None)
        return cls(
            synced=True,
            method=outcome.method.value if outcome.method else None,
            status=outcome.subscription_status,
            cancelAtPeriodEnd=(
                outcome.resolved.fields.cancel_at_period_end if outcome.resolved else None
            ),
        )


class WebhookProcessingResult(BaseModel):
    """Response body of POST /api/stripe/webhook."""

    success: bool
    event_type: str
    event_id: str
    message: str
    user_id: str | None = None
    processed_at: datetime


class ManualOverrideResult(BaseModel):
    """Report produced by the manual override tool."""

    success: bool
    email: str
    user_id: str | None = Field(None, description="Resolved user id, if any")
    customer_id: str | None = None
    subscription_id: str | None = None
    stripe_status: str | None = None
    invoices_checked: bool = False
    has_unpaid_invoices: bool = False
    unpaid_invoice_ids: list[str] = Field(default_factory=list)
    determined_tier: str | None = None
    determined_billing_status: str | None = None
    previous_tier: str | None = None
    previous_billing_status: str | None = None
    tier_reset_reason: str | None = None
    reason: str | None = None
    cache_updated: bool | None = None
    error: str | None = None

    def summary(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)
