"""
Stripe Gateway
Read-only access to subscriptions, customers and invoices.

Every call goes through one injected ``stripe.StripeClient``; results are
converted to immutable snapshots so nothing downstream touches Stripe objects.
A missing resource is reported as ``None``. Anything else that goes wrong is
raised as ``BillingProviderError``.
"""

import logging
from datetime import UTC, datetime
from typing import Any

import stripe

from src.constants import UNPAID_INVOICE_STATUSES
from src.schemas.billing import CustomerSnapshot, InvoiceSnapshot, SubscriptionSnapshot
from src.services.prometheus_metrics import track_provider_call
from src.utils.exceptions import BillingProviderError

logger = logging.getLogger(__name__)

RESOURCE_MISSING = "resource_missing"


def get_stripe_value(obj: Any, attr: str) -> Any:
    """
    Safely extract a field from a Stripe object (dict-like or attribute-based).

    Mapping access is tried first because older StripeObject releases subclass
    dict, where names such as ``items`` would otherwise resolve to the dict
    method. Newer releases are not dicts, so ``.get`` must never be called.
    """
    if obj is None:
        return None

    try:
        return obj[attr]
    except (KeyError, TypeError, IndexError, AttributeError):
        pass

    return getattr(obj, attr, None)


def metadata_to_dict(metadata: Any) -> dict[str, str]:
    """Convert Stripe metadata object into a plain dictionary."""
    if metadata is None:
        return {}
    if isinstance(metadata, dict):
        return {str(key): str(value) for key, value in metadata.items()}
    to_dict = getattr(metadata, "to_dict", None)
    if callable(to_dict):
        return {str(key): str(value) for key, value in to_dict().items()}
    try:
        return {str(key): str(value) for key, value in dict(metadata).items()}
    except (TypeError, ValueError):
        return {}


def _timestamp_to_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    try:
        return datetime.fromtimestamp(int(value), UTC)
    except (TypeError, ValueError, OverflowError):
        logger.warning(f"Ignoring unparseable Stripe timestamp: {value!r}")
        return None


def _list_data(response: Any) -> list[Any]:
    data = get_stripe_value(response, "data")
    return list(data) if data else []


def subscription_from_stripe(subscription: Any) -> SubscriptionSnapshot:
    """Build a snapshot from a Stripe subscription object or webhook payload dict."""
    items = _list_data(get_stripe_value(subscription, "items"))

    price_ids: list[str] = []
    for item in items:
        price = get_stripe_value(item, "price")
        price_id = price if isinstance(price, str) else get_stripe_value(price, "id")
        if price_id:
            price_ids.append(price_id)

    # Newer API versions moved the billing period onto subscription items
    period_end = get_stripe_value(subscription, "current_period_end")
    if period_end is None and items:
        period_end = get_stripe_value(items[0], "current_period_end")

    customer = get_stripe_value(subscription, "customer")
    customer_id = customer if isinstance(customer, str) or customer is None else (
        get_stripe_value(customer, "id")
    )

    return SubscriptionSnapshot(
        id=get_stripe_value(subscription, "id"),
        customer_id=customer_id,
        status=get_stripe_value(subscription, "status") or "",
        price_ids=tuple(price_ids),
        current_period_end=_timestamp_to_datetime(period_end),
        cancel_at_period_end=bool(get_stripe_value(subscription, "cancel_at_period_end")),
        metadata=metadata_to_dict(get_stripe_value(subscription, "metadata")),
    )


def invoice_from_stripe(invoice: Any) -> InvoiceSnapshot:
    amount_due = get_stripe_value(invoice, "amount_due")
    return InvoiceSnapshot(
        id=get_stripe_value(invoice, "id"),
        status=get_stripe_value(invoice, "status") or "",
        amount_due=int(amount_due or 0),
        currency=get_stripe_value(invoice, "currency") or "usd",
    )


def customer_from_stripe(customer: Any) -> CustomerSnapshot:
    return CustomerSnapshot(
        id=get_stripe_value(customer, "id"),
        email=get_stripe_value(customer, "email"),
        metadata=metadata_to_dict(get_stripe_value(customer, "metadata")),
    )


class StripeGateway:
    """Service class wrapping the Stripe read operations used by billing sync"""

    def __init__(self, client: stripe.StripeClient):
        self._client = client
        # stripe>=12 namespaces resources under v1
        self._api = getattr(client, "v1", client)

    def _call(self, operation: str, fn, *args, **kwargs):
        try:
            with track_provider_call("stripe", operation):
                return fn(*args, **kwargs)
        except stripe.StripeError as e:
            logger.error(f"Stripe {operation} failed: {type(e).__name__}: {e}")
            raise BillingProviderError(f"Stripe {operation} failed", operation=operation) from e

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot | None:
        """
        Retrieve one subscription.

        Returns:
            The snapshot, or None when Stripe reports the id does not exist.
        """
        try:
            with track_provider_call("stripe", "retrieve_subscription"):
                subscription = self._api.subscriptions.retrieve(subscription_id)
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == RESOURCE_MISSING:
                logger.info(f"Stripe subscription {subscription_id} no longer exists")
                return None
            raise BillingProviderError(
                "Stripe retrieve_subscription failed", operation="retrieve_subscription"
            ) from e
        except stripe.StripeError as e:
            logger.error(f"Stripe retrieve_subscription failed for {subscription_id}: {e}")
            raise BillingProviderError(
                "Stripe retrieve_subscription failed", operation="retrieve_subscription"
            ) from e

        return subscription_from_stripe(subscription)

    def list_subscriptions(
        self, customer_id: str, status: str, limit: int = 1
    ) -> list[SubscriptionSnapshot]:
        """List a customer's subscriptions in one status, newest first as Stripe orders them."""
        response = self._call(
            "list_subscriptions",
            self._api.subscriptions.list,
            params={"customer": customer_id, "status": status, "limit": limit},
        )
        if get_stripe_value(response, "has_more"):
            logger.warning(
                f"Customer {customer_id} has more than {limit} {status} subscription(s); "
                "using the first returned by Stripe"
            )
        return [subscription_from_stripe(sub) for sub in _list_data(response)]

    def list_all_subscriptions(self, customer_id: str, limit: int = 100) -> list[SubscriptionSnapshot]:
        """Every subscription for a customer regardless of status (diagnostics only)."""
        response = self._call(
            "list_subscriptions",
            self._api.subscriptions.list,
            params={"customer": customer_id, "status": "all", "limit": limit},
        )
        return [subscription_from_stripe(sub) for sub in _list_data(response)]

    def find_customer_by_email(self, email: str) -> CustomerSnapshot | None:
        response = self._call(
            "list_customers",
            self._api.customers.list,
            params={"email": email, "limit": 1},
        )
        customers = _list_data(response)
        if not customers:
            return None
        if get_stripe_value(response, "has_more"):
            logger.warning("Multiple Stripe customers share one email; using the first returned")
        return customer_from_stripe(customers[0])

    def retrieve_customer(self, customer_id: str) -> CustomerSnapshot | None:
        try:
            with track_provider_call("stripe", "retrieve_customer"):
                customer = self._api.customers.retrieve(customer_id)
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == RESOURCE_MISSING:
                return None
            raise BillingProviderError(
                "Stripe retrieve_customer failed", operation="retrieve_customer"
            ) from e
        except stripe.StripeError as e:
            raise BillingProviderError(
                "Stripe retrieve_customer failed", operation="retrieve_customer"
            ) from e

        if get_stripe_value(customer, "deleted"):
            return None
        return customer_from_stripe(customer)

    def list_unpaid_invoices(self, customer_id: str, limit: int = 10) -> list[InvoiceSnapshot]:
        """
        Invoices that block paid access (open or uncollectible).

        Stripe filters invoices by a single status, so one query is made per status.
        """
        invoices: list[InvoiceSnapshot] = []
        for status in UNPAID_INVOICE_STATUSES:
            response = self._call(
                "list_invoices",
                self._api.invoices.list,
                params={"customer": customer_id, "status": status, "limit": limit},
            )
            invoices.extend(invoice_from_stripe(inv) for inv in _list_data(response))
        return invoices
