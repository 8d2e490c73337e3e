#!/usr/bin/env python3
"""
Diagnose User Tier Script

Read-only report comparing what Stripe, Supabase and Clerk say about one user,
plus the tier the resolver would assign right now. Flags subscription prices
that are not configured, since those silently count as standard.

Usage:
    python scripts/diagnose_user_tier.py user@example.com
    python scripts/diagnose_user_tier.py user@example.com --json
"""

import argparse
import json
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from src.config import Config  # noqa: E402
from src.config.logging_config import configure_logging  # noqa: E402
from src.services.billing_diagnostics import BillingDiagnostics  # noqa: E402
from src.services.billing_services import build_billing_services  # noqa: E402
from src.utils.exceptions import BillingConfigurationError, BillingError  # noqa: E402


def print_report(report: dict) -> None:
    print("\n=== Price Configuration ===")
    for name, value in report["price_ids"].items():
        print(f"{name}: {value or '(not set)'}")

    print("\n=== Supabase Billing Record ===")
    if report["supabase"] is None:
        print("❌ No user row with this email")
    else:
        for column, value in report["supabase"].items():
            print(f"  {column}: {value}")

    print("\n=== Clerk Metadata ===")
    if report["clerk"] is None:
        print("❌ No Clerk user with this email")
    else:
        print(json.dumps(report["clerk"], indent=2, default=str))

    print("\n=== Stripe ===")
    stripe_state = report["stripe"]
    if stripe_state is None:
        print("❌ No Stripe customer found with this email.")
    else:
        print(f"Customer ID: {stripe_state['customer_id']}")
        print(f"Metadata: {json.dumps(stripe_state['customer_metadata'])}")
        if not stripe_state["subscriptions"]:
            print("No subscriptions found for this customer.")
        for sub in stripe_state["subscriptions"]:
            print(f"\nSubscription: {sub['id']}")
            print(f"  Status: {sub['status']}  Plan: {sub['plan']}  Prices: {', '.join(sub['price_ids'])}")
            print(f"  Current Period End: {sub['current_period_end']}")
            print(f"  Cancel at Period End: {sub['cancel_at_period_end']}")
            for price_id in sub["unclassified_price_ids"]:
                print(f"  ⚠️  Price {price_id} is not configured and is treated as standard")
        for invoice in stripe_state["unpaid_invoices"]:
            print(
                f"⚠️  {invoice['status'].upper()} invoice {invoice['id']}: "
                f"{invoice['amount_due'] / 100:.2f} {invoice['currency'].upper()}"
            )

    print("\n=== Resolver Verdict ===")
    if report["resolved"] is None:
        print("No customer: tier=free, billing_status=none")
    else:
        resolved = report["resolved"]
        print(
            f"tier={resolved['tier']} billing_status={resolved['billing_status']} "
            f"plan={resolved['plan']} (subscription={resolved['subscription_id']})"
        )
    print("\n=== Diagnosis Complete ===\n")


def main(argv: list[str] | None = None, services_factory=build_billing_services) -> int:
    parser = argparse.ArgumentParser(description="Diagnose a user's billing tier (read-only)")
    parser.add_argument("email", help="Email address of the user")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    args = parser.parse_args(argv)

    configure_logging("WARNING")
    Config.reload()

    try:
        services = services_factory()
    except BillingConfigurationError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    diagnostics = BillingDiagnostics(services.gateway, services.store, services.clerk, services.price_table)
    try:
        report = diagnostics.diagnose(args.email)
    except BillingError as e:
        print(f"❌ Diagnosis failed: {type(e).__name__}: {e}", file=sys.stderr)
        return 1
    finally:
        services.close()

    if args.json:
        print(json.dumps(report, indent=2, default=str))
    else:
        print_report(report)
    return 0


if __name__ == "__main__":
    sys.exit(main())
