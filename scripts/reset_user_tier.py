#!/usr/bin/env python3
"""
Reset User Tier Script

Checks a user's actual Stripe subscription and invoice status, then resets
their tier in Supabase and Clerk to match.

Use this when:
- A user is marked as premium but their payment failed
- Webhook processing failed and the user's tier is out of sync
- Manual intervention is needed to fix billing status

Usage:
    python scripts/reset_user_tier.py user@example.com
    python scripts/reset_user_tier.py user@example.com --json

Exit code is 0 on success and 1 on failure.
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
from src.schemas.billing import ManualOverrideResult  # noqa: E402
from src.services.billing_services import build_billing_services  # noqa: E402
from src.utils.exceptions import BillingConfigurationError  # noqa: E402
from src.utils.security_validators import is_valid_email  # noqa: E402


def print_report(result: ManualOverrideResult) -> None:
    print("")
    if not result.success:
        print(f"❌ Reset failed for {result.email}: {result.error}")
        if result.invoices_checked:
            print(f"   Has unpaid invoices: {result.has_unpaid_invoices}")
        print("")
        return

    print("========================================")
    print("✅ RESET COMPLETE")
    print("========================================")
    print(f"   User ID: {result.user_id}")
    print(f"   Stripe customer: {result.customer_id}")
    print(f"   Subscription: {result.subscription_id or 'none'} (status={result.stripe_status or 'n/a'})")
    print(f"   Previous tier: {result.previous_tier} → New tier: {result.determined_tier}")
    print(
        f"   Previous billing status: {result.previous_billing_status} → "
        f"New status: {result.determined_billing_status}"
    )
    print(f"   Has unpaid invoices: {result.has_unpaid_invoices}")
    for invoice_id in result.unpaid_invoice_ids:
        print(f"     - {invoice_id}")
    print(f"   Reset reason: {result.tier_reset_reason}")
    if result.reason:
        print(f"   Note: {result.reason}")
    if result.cache_updated is False:
        print("   ⚠️  Clerk metadata was NOT updated; re-run or sync the user to refresh it")
    print("")
    print("   The user should refresh their app to see the updated access level.")
    print("")


def main(argv: list[str] | None = None, services_factory=build_billing_services) -> int:
    parser = argparse.ArgumentParser(description="Reset a user's tier to match Stripe")
    parser.add_argument("email", help="Email address of the Stripe customer / user")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    configure_logging("DEBUG" if args.verbose else "WARNING")

    if not is_valid_email(args.email.strip()):
        print(f"❌ Not a valid email address: {args.email}", file=sys.stderr)
        return 1

    Config.reload()
    try:
        services = services_factory()
    except BillingConfigurationError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    try:
        if not args.json:
            print(f"\n🔍 Checking payment status for: {args.email}")
        result = services.manual_override.run(args.email)
    finally:
        services.close()

    if args.json:
        print(json.dumps(result.summary(), indent=2))
    else:
        print_report(result)

    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
