"""
Tests for Stripe webhook handling

Events are verified with real signatures, then each handled event triggers a
reconciliation that re-reads the subscription from Stripe.
"""

import pytest
import stripe

from src.services.billing_webhooks import extract_references
from src.utils.exceptions import ReconciliationError
from tests.helpers.mocks import (
    make_event,
    make_invoice,
    make_subscription,
    signed_webhook,
)


@pytest.fixture
def jane(supabase, clerk_server):
    supabase.store["users"].append(
        {"id": "user_1", "email": "jane@example.com", "tier": "free", "stripe_customer_id": "cus_1"}
    )
    clerk_server.add_user("user_1", "jane@example.com")


class _AttributeOnlyEvent:
    """Event stand-in without dict methods, like ``stripe.Event`` in current SDKs."""

    def __init__(self, data: dict):
        self._data = data

    def __getitem__(self, key):
        return self._data[key]

    def __getattr__(self, name):
        if name.startswith("_") or name not in self._data:
            raise AttributeError(name)
        return self._data[name]


class TestExtractReferences:
    def test_subscription_event(self):
        obj = make_subscription("sub_1", "cus_1", metadata={"userId": "user_1"})

        assert extract_references("customer.subscription.updated", obj) == ("user_1", "sub_1", "cus_1")

    def test_invoice_event_legacy_shape(self):
        obj = {**make_invoice("in_1", "cus_1"), "subscription": "sub_1", "metadata": {}}

        assert extract_references("invoice.paid", obj) == (None, "sub_1", "cus_1")

    def test_invoice_event_parent_shape(self):
        obj = {
            **make_invoice("in_1", "cus_1"),
            "parent": {
                "type": "subscription_details",
                "subscription_details": {"subscription": "sub_1", "metadata": {"userId": "user_1"}},
            },
        }

        assert extract_references("invoice.payment_failed", obj) == ("user_1", "sub_1", "cus_1")

    def test_checkout_session(self):
        obj = {
            "id": "cs_1",
            "object": "checkout.session",
            "customer": "cus_1",
            "subscription": "sub_1",
            "client_reference_id": "user_1",
            "metadata": {},
        }

        assert extract_references("checkout.session.completed", obj) == ("user_1", "sub_1", "cus_1")

    def test_expanded_references(self):
        obj = {
            "id": "cs_1",
            "customer": {"id": "cus_1"},
            "subscription": {"id": "sub_1"},
            "metadata": {"userId": "user_1"},
        }

        assert extract_references("checkout.session.completed", obj) == ("user_1", "sub_1", "cus_1")


class TestSignatureVerification:
    def test_invalid_signature(self, services):
        payload, _ = signed_webhook(make_event("invoice.paid", {}))

        with pytest.raises(ValueError, match="Invalid webhook signature"):
            services.webhooks.handle(payload, "t=1,v1=deadbeef")

    def test_wrong_secret(self, services):
        payload, header = signed_webhook(make_event("invoice.paid", {}), secret="whsec_other")

        with pytest.raises(ValueError):
            services.webhooks.handle(payload, header)

    def test_missing_signature(self, services):
        with pytest.raises(ValueError, match="Missing webhook signature"):
            services.webhooks.handle(b"{}", None)

    def test_missing_secret(self, supabase, stripe_client, clerk_server):
        from tests.helpers.mocks import make_billing_services

        services = make_billing_services(supabase, stripe_client, clerk_server, webhook_secret=None)
        payload, header = signed_webhook(make_event("invoice.paid", {}))

        with pytest.raises(ValueError, match="secret not configured"):
            services.webhooks.handle(payload, header)


class TestHandle:
    def test_subscription_updated_reconciles_from_stripe(
        self, services, supabase, stripe_client, clerk_server, jane
    ):
        stripe_client.add_subscription(make_subscription("sub_1", "cus_1", status="active"))
        # The payload is stale; Stripe now says active
        stale = make_subscription("sub_1", "cus_1", status="incomplete", metadata={"userId": "user_1"})
        payload, header = signed_webhook(make_event("customer.subscription.updated", stale))

        result = services.webhooks.handle(payload, header)

        assert result.success is True
        assert result.user_id == "user_1"
        assert supabase.user("user_1")["tier"] == "premium"
        assert supabase.user("user_1")["stripe_subscription_id"] == "sub_1"
        assert clerk_server.metadata("user_1")["tier"] == "premium"
        assert "subscriptions.retrieve" in stripe_client.operations()

    def test_subscription_deleted_resets_to_free(self, services, supabase, stripe_client, jane):
        stripe_client.add_subscription(make_subscription("sub_1", "cus_1", status="canceled"))
        payload, header = signed_webhook(
            make_event(
                "customer.subscription.deleted", make_subscription("sub_1", "cus_1", status="canceled")
            )
        )

        services.webhooks.handle(payload, header)

        row = supabase.user("user_1")
        assert row["tier"] == "free"
        assert row["billing_status"] == "canceled"

    def test_late_event_for_old_subscription_keeps_paying_one(
        self, services, supabase, stripe_client, clerk_server
    ):
        clerk_server.add_user("user_1", "jane@example.com", {"tier": "premium"})
        supabase.store["users"].append(
            {
                "id": "user_1",
                "email": "jane@example.com",
                "tier": "premium",
                "stripe_customer_id": "cus_1",
                "stripe_subscription_id": "sub_new",
            }
        )
        stripe_client.add_subscription(
            make_subscription("sub_old", "cus_1", status="canceled", created=1690000000)
        )
        stripe_client.add_subscription(make_subscription("sub_new", "cus_1", status="active"))
        payload, header = signed_webhook(
            make_event(
                "customer.subscription.deleted", make_subscription("sub_old", "cus_1", status="canceled")
            )
        )

        services.webhooks.handle(payload, header)

        row = supabase.user("user_1")
        assert row["tier"] == "premium"
        assert row["stripe_subscription_id"] == "sub_new"

        # The next app-load sync still sees the paying subscription
        outcome = services.reconciler.sync_user("user_1")
        assert outcome.subscription_status == "active"
        assert supabase.user("user_1")["tier"] == "premium"

    def test_payment_failed_downgrades(self, services, supabase, stripe_client, jane):
        stripe_client.add_subscription(make_subscription("sub_1", "cus_1"))
        invoice = stripe_client.add_invoice(make_invoice("in_1", "cus_1", status="open"))
        payload, header = signed_webhook(
            make_event("invoice.payment_failed", {**invoice, "subscription": "sub_1"})
        )

        services.webhooks.handle(payload, header)

        assert supabase.user("user_1")["tier"] == "free"
        assert supabase.user("user_1")["billing_status"] == "past_due"

    def test_user_matched_by_customer_id(self, services, supabase, stripe_client, jane):
        stripe_client.add_subscription(make_subscription("sub_1", "cus_1"))
        payload, header = signed_webhook(
            make_event(
                "invoice.paid", {**make_invoice("in_1", "cus_1", status="paid"), "subscription": "sub_1"}
            )
        )

        result = services.webhooks.handle(payload, header)

        assert result.user_id == "user_1"
        assert supabase.user("user_1")["tier"] == "premium"

    def test_records_event_after_processing(self, services, supabase, stripe_client, jane):
        stripe_client.add_subscription(make_subscription("sub_1", "cus_1"))
        payload, header = signed_webhook(
            make_event(
                "customer.subscription.created", make_subscription("sub_1", "cus_1"), event_id="evt_42"
            )
        )

        services.webhooks.handle(payload, header)

        events = supabase.store["stripe_webhook_events"]
        assert [event["event_id"] for event in events] == ["evt_42"]
        assert events[0]["user_id"] == "user_1"
        assert events[0]["outcome"] == "processed"
        assert events[0]["tier"] == "premium"
        assert events[0]["billing_status"] == "active"
        assert events[0]["stripe_account"] is None

    def test_event_read_without_dict_methods(self, services, supabase, stripe_client, jane, monkeypatch):
        # Current Stripe SDKs return events that support item and attribute access but not .get()
        stripe_client.add_subscription(make_subscription("sub_1", "cus_1"))
        event = _AttributeOnlyEvent(
            {
                **make_event("customer.subscription.updated", make_subscription("sub_1", "cus_1")),
                "account": "acct_connected",
            }
        )
        monkeypatch.setattr(
            "src.services.billing_webhooks.stripe.Webhook.construct_event", lambda *args: event
        )

        result = services.webhooks.handle(b"{}", "t=1,v1=sig")

        assert result.user_id == "user_1"
        recorded = supabase.store["stripe_webhook_events"][0]
        assert recorded["stripe_account"] == "acct_connected"
        assert recorded["tier"] == "premium"

    def test_duplicate_event_skipped(self, services, supabase, stripe_client, jane):
        supabase.store["stripe_webhook_events"].append({"event_id": "evt_dup"})
        payload, header = signed_webhook(
            make_event(
                "customer.subscription.updated", make_subscription("sub_1", "cus_1"), event_id="evt_dup"
            )
        )

        result = services.webhooks.handle(payload, header)

        assert "duplicate" in result.message
        assert stripe_client.calls == []
        assert supabase.updates == []

    def test_unhandled_event_ignored(self, services, supabase, stripe_client):
        customer = {"id": "cus_1", "object": "customer"}
        payload, header = signed_webhook(make_event("customer.created", customer))

        result = services.webhooks.handle(payload, header)

        assert result.success is True
        assert "ignored" in result.message
        assert stripe_client.calls == []
        assert supabase.store["stripe_webhook_events"] == []

    def test_no_matching_user_is_acknowledged(self, services, supabase, stripe_client):
        payload, header = signed_webhook(
            make_event("customer.subscription.updated", make_subscription("sub_1", "cus_unknown"))
        )

        result = services.webhooks.handle(payload, header)

        assert result.success is True
        assert result.user_id is None
        assert supabase.updates == []
        recorded = supabase.store["stripe_webhook_events"]
        assert len(recorded) == 1
        assert recorded[0]["outcome"] == "unmatched"
        assert recorded[0]["tier"] is None

    def test_reconciliation_failure_propagates_and_is_not_recorded(
        self, services, supabase, stripe_client, jane
    ):
        stripe_client.errors["subscriptions.retrieve"] = stripe.APIConnectionError("Network down")
        payload, header = signed_webhook(
            make_event("customer.subscription.updated", make_subscription("sub_1", "cus_1"))
        )

        with pytest.raises(ReconciliationError):
            services.webhooks.handle(payload, header)

        # Left unrecorded so Stripe's retry is processed
        assert supabase.store["stripe_webhook_events"] == []
