"""
Tests for the Stripe gateway

Snapshots must be built from both API objects and webhook-shaped dicts, a
missing resource must read as None, and every other Stripe failure must
surface as BillingProviderError.
"""

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest
import stripe

from src.services.stripe_gateway import (
    StripeGateway,
    get_stripe_value,
    metadata_to_dict,
    subscription_from_stripe,
)
from src.utils.exceptions import BillingProviderError
from tests.helpers.mocks import (
    PERIOD_END_TS,
    STANDARD_MONTHLY,
    make_customer,
    make_invoice,
    make_subscription,
)


@pytest.fixture
def gateway(stripe_client):
    return StripeGateway(stripe_client)


class TestSnapshotConversion:
    def test_subscription_from_dict(self):
        """Plain dicts carry ``items`` as a key, which must win over the dict method"""
        snapshot = subscription_from_stripe(
            make_subscription(
                "sub_1",
                "cus_1",
                status="trialing",
                price_id=STANDARD_MONTHLY,
                cancel_at_period_end=True,
                metadata={"userId": "user_1"},
            )
        )

        assert snapshot.id == "sub_1"
        assert snapshot.customer_id == "cus_1"
        assert snapshot.status == "trialing"
        assert snapshot.price_ids == (STANDARD_MONTHLY,)
        assert snapshot.current_period_end == datetime.fromtimestamp(PERIOD_END_TS, UTC)
        assert snapshot.cancel_at_period_end is True
        assert snapshot.metadata == {"userId": "user_1"}

    def test_period_end_falls_back_to_first_item(self):
        payload = make_subscription("sub_1", "cus_1", current_period_end=None)
        payload["items"]["data"][0]["current_period_end"] = PERIOD_END_TS

        snapshot = subscription_from_stripe(payload)

        assert snapshot.current_period_end == datetime.fromtimestamp(PERIOD_END_TS, UTC)

    def test_unexpanded_price_and_expanded_customer(self):
        payload = make_subscription("sub_1", "cus_1")
        payload["items"]["data"][0]["price"] = "price_raw"
        payload["customer"] = {"id": "cus_expanded", "object": "customer"}

        snapshot = subscription_from_stripe(payload)

        assert snapshot.price_ids == ("price_raw",)
        assert snapshot.customer_id == "cus_expanded"

    def test_subscription_without_items(self):
        payload = make_subscription("sub_1", "cus_1")
        payload["items"] = {"object": "list", "data": []}

        snapshot = subscription_from_stripe(payload)

        assert snapshot.price_ids == ()

    def test_get_stripe_value_reads_attributes(self):
        obj = MagicMock(spec=["status"])
        obj.status = "active"

        assert get_stripe_value(obj, "status") == "active"
        assert get_stripe_value(None, "status") is None

    def test_metadata_to_dict(self):
        assert metadata_to_dict(None) == {}
        assert metadata_to_dict({"userId": 7}) == {"userId": "7"}


class TestRetrieveSubscription:
    def test_returns_snapshot(self, gateway, stripe_client):
        stripe_client.add_subscription(make_subscription("sub_1", "cus_1"))

        snapshot = gateway.retrieve_subscription("sub_1")

        assert snapshot.id == "sub_1"

    def test_missing_subscription_is_none(self, gateway):
        assert gateway.retrieve_subscription("sub_gone") is None

    def test_other_invalid_request_raises(self, gateway, stripe_client):
        stripe_client.errors["subscriptions.retrieve"] = stripe.InvalidRequestError(
            "Invalid API version", "stripe_version", code="invalid_request"
        )

        with pytest.raises(BillingProviderError):
            gateway.retrieve_subscription("sub_1")

    def test_connection_error_raises_provider_error(self, gateway, stripe_client):
        stripe_client.errors["subscriptions.retrieve"] = stripe.APIConnectionError("Network down")

        with pytest.raises(BillingProviderError) as exc_info:
            gateway.retrieve_subscription("sub_1")

        assert exc_info.value.operation == "retrieve_subscription"
        assert isinstance(exc_info.value.__cause__, stripe.APIConnectionError)


class TestListing:
    def test_list_subscriptions_filters_status(self, gateway, stripe_client):
        stripe_client.add_subscription(make_subscription("sub_old", "cus_1", status="canceled"))
        stripe_client.add_subscription(make_subscription("sub_new", "cus_1", status="active"))

        subscriptions = gateway.list_subscriptions("cus_1", status="active")

        assert [sub.id for sub in subscriptions] == ["sub_new"]
        assert stripe_client.calls[-1] == (
            "subscriptions.list",
            {"customer": "cus_1", "status": "active", "limit": 1},
        )

    def test_multiple_active_uses_first_returned(self, gateway, stripe_client, caplog):
        stripe_client.add_subscription(make_subscription("sub_a", "cus_1", created=1700000000))
        stripe_client.add_subscription(make_subscription("sub_b", "cus_1", created=1710000000))

        subscriptions = gateway.list_subscriptions("cus_1", status="active", limit=1)

        assert [sub.id for sub in subscriptions] == ["sub_b"]
        assert "more than 1 active subscription" in caplog.text

    def test_list_all_subscriptions(self, gateway, stripe_client):
        stripe_client.add_subscription(make_subscription("sub_a", "cus_1", status="canceled"))
        stripe_client.add_subscription(make_subscription("sub_b", "cus_1", status="active"))

        assert {sub.id for sub in gateway.list_all_subscriptions("cus_1")} == {"sub_a", "sub_b"}

    def test_list_rate_limited_raises(self, gateway, stripe_client):
        stripe_client.errors["subscriptions.list"] = stripe.RateLimitError("Too many requests")

        with pytest.raises(BillingProviderError):
            gateway.list_subscriptions("cus_1", status="active")

    def test_unpaid_invoices_queries_each_status(self, gateway, stripe_client):
        stripe_client.add_invoice(make_invoice("in_open", "cus_1", status="open"))
        stripe_client.add_invoice(make_invoice("in_bad", "cus_1", status="uncollectible"))
        stripe_client.add_invoice(make_invoice("in_paid", "cus_1", status="paid"))
        stripe_client.add_invoice(make_invoice("in_other", "cus_2", status="open"))

        invoices = gateway.list_unpaid_invoices("cus_1")

        assert [invoice.id for invoice in invoices] == ["in_open", "in_bad"]
        assert invoices[0].amount_due == 2000
        assert stripe_client.operations().count("invoices.list") == 2


class TestCustomers:
    def test_find_customer_by_email(self, gateway, stripe_client):
        stripe_client.add_customer(make_customer("cus_1", "jane@example.com", {"userId": "user_1"}))

        customer = gateway.find_customer_by_email("jane@example.com")

        assert customer.id == "cus_1"
        assert customer.metadata == {"userId": "user_1"}

    def test_find_customer_by_email_none(self, gateway):
        assert gateway.find_customer_by_email("nobody@example.com") is None

    def test_retrieve_deleted_customer_is_none(self, gateway, stripe_client):
        stripe_client.add_customer({"id": "cus_del", "object": "customer", "deleted": True, "email": None})

        assert gateway.retrieve_customer("cus_del") is None

    def test_retrieve_missing_customer_is_none(self, gateway):
        assert gateway.retrieve_customer("cus_missing") is None


def test_gateway_uses_v1_namespace_when_present():
    client = MagicMock()
    client.v1.subscriptions.retrieve.return_value = make_subscription("sub_1", "cus_1")

    snapshot = StripeGateway(client).retrieve_subscription("sub_1")

    assert snapshot.id == "sub_1"
    client.v1.subscriptions.retrieve.assert_called_once_with("sub_1")
