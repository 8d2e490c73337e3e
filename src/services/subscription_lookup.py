"""
Subscription lookup strategies.

A user's subscription is located by trying, in order:

1. the stored subscription id (a non-paying one yields to a paying
   subscription of the same customer)
2. the stored customer id (active, then trialing)
3. the account email (customer search, then active, then trialing)

Each strategy returns a typed result. ``NotFound`` falls through to the next
strategy; ``TransientError`` stops the chain so the caller can abort.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from src.constants import PAYING_STATUSES
from src.db.billing_records import SupabaseBillingStore
from src.schemas.billing import LookupMethod, ReconciliationContext, SubscriptionSnapshot, SyncReason
from src.services.stripe_gateway import StripeGateway
from src.utils.exceptions import BillingError, BillingProviderError, BillingStoreError
from src.utils.security_validators import mask_email

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Found:
    subscription: SubscriptionSnapshot
    customer_id: str | None
    method: LookupMethod


@dataclass(frozen=True)
class NotFound:
    reason: str


@dataclass(frozen=True)
class TransientError:
    cause: BillingError


LookupResult = Found | NotFound | TransientError


class SubscriptionLookup:
    """Runs the ordered lookup strategies against Stripe."""

    def __init__(self, gateway: StripeGateway, store: SupabaseBillingStore):
        self._gateway = gateway
        self._store = store

    @property
    def strategies(self) -> tuple[Callable[[ReconciliationContext], LookupResult], ...]:
        return (self.by_subscription_id, self.by_customer_id, self.by_email)

    def find(self, context: ReconciliationContext) -> LookupResult:
        """
        Locate the subscription for ``context``.

        Returns:
            The first ``Found`` or ``TransientError`` produced by a strategy, or
            ``NotFound(no_subscription_found)`` once every strategy has missed.
        """
        if context.subscription is not None:
            return Found(
                subscription=context.subscription,
                customer_id=context.subscription.customer_id or context.customer_id,
                method=LookupMethod.EXPLICIT,
            )

        for strategy in self.strategies:
            result = strategy(context)
            if isinstance(result, NotFound):
                logger.debug(
                    f"[BILLING_SYNC] {strategy.__name__} missed for {context.user_id}: {result.reason}"
                )
                continue
            return result

        return NotFound(SyncReason.NO_SUBSCRIPTION_FOUND.value)

    def by_subscription_id(self, context: ReconciliationContext) -> LookupResult:
        if not context.subscription_id:
            return NotFound("no_subscription_id")

        try:
            subscription = self._gateway.retrieve_subscription(context.subscription_id)
        except BillingProviderError as e:
            return TransientError(e)

        if subscription is None:
            logger.info(
                f"[BILLING_SYNC] Stored subscription {context.subscription_id} for user "
                f"{context.user_id} is stale, falling through"
            )
            return NotFound("subscription_missing")

        found = Found(
            subscription=subscription,
            customer_id=subscription.customer_id or context.customer_id,
            method=LookupMethod.SUBSCRIPTION_ID,
        )
        if subscription.status in PAYING_STATUSES or not found.customer_id:
            return found

        # A dead stored (or webhook-supplied) subscription must not hide a newer paying one
        replacement = self._active_or_trialing(
            found.customer_id,
            LookupMethod.CUSTOMER_ID,
            LookupMethod.CUSTOMER_ID_TRIALING,
        )
        if isinstance(replacement, NotFound):
            return found
        if isinstance(replacement, Found):
            logger.info(
                f"[BILLING_SYNC] Subscription {subscription.id} is {subscription.status}; "
                f"customer {found.customer_id} has {replacement.subscription.status} "
                f"subscription {replacement.subscription.id}, using it instead"
            )
        return replacement

    def by_customer_id(self, context: ReconciliationContext) -> LookupResult:
        if not context.customer_id:
            return NotFound("no_customer_id")

        return self._active_or_trialing(
            context.customer_id,
            LookupMethod.CUSTOMER_ID,
            LookupMethod.CUSTOMER_ID_TRIALING,
        )

    def by_email(self, context: ReconciliationContext) -> LookupResult:
        if not context.email:
            return NotFound("no_email")

        try:
            customer = self._gateway.find_customer_by_email(context.email)
        except BillingProviderError as e:
            return TransientError(e)

        if customer is None:
            logger.info(f"[BILLING_SYNC] No Stripe customer for {mask_email(context.email)}")
            return NotFound("no_customer_for_email")

        if customer.id != context.customer_id:
            self._persist_customer_id(context.user_id, customer.id)

        return self._active_or_trialing(
            customer.id,
            LookupMethod.EMAIL_LOOKUP,
            LookupMethod.EMAIL_LOOKUP_TRIALING,
        )

    def _persist_customer_id(self, user_id: str, customer_id: str) -> None:
        # Independent of the reconciliation outcome; a failure only costs a slower lookup next time
        try:
            self._store.save_customer_id(user_id, customer_id)
        except BillingStoreError as e:
            logger.warning(
                f"[BILLING_SYNC] Could not persist customer {customer_id} for user {user_id}: {e}"
            )

    def _active_or_trialing(
        self,
        customer_id: str,
        active_method: LookupMethod,
        trialing_method: LookupMethod,
    ) -> LookupResult:
        for status, method in (("active", active_method), ("trialing", trialing_method)):
            try:
                subscriptions = self._gateway.list_subscriptions(customer_id, status=status, limit=1)
            except BillingProviderError as e:
                return TransientError(e)
            if subscriptions:
                subscription = subscriptions[0]
                return Found(
                    subscription=subscription,
                    customer_id=subscription.customer_id or customer_id,
                    method=method,
                )

        return NotFound("no_active_or_trialing_subscription")
