"""
Application Constants

Table, column and metadata key names shared by the stores the billing
reconciliation engine writes to.
"""

import os

# Application metadata
APP_NAME = os.environ.get("APP_NAME", "Billing Sync")

# Durable store (Supabase)
USERS_TABLE = "users"
WEBHOOK_EVENTS_TABLE = "stripe_webhook_events"

COL_BILLING_PLAN = "billing_plan"
COL_BILLING_STATUS = "billing_status"
COL_BILLING_PERIOD_END = "billing_current_period_end"
COL_BILLING_CANCEL_AT_PERIOD_END = "billing_cancel_at_period_end"
COL_SUBSCRIPTION_ID = "stripe_subscription_id"
COL_CUSTOMER_ID = "stripe_customer_id"
COL_TIER = "tier"
COL_UPDATED_AT = "updated_at"
COL_TIER_RESET_AT = "tier_reset_at"
COL_TIER_RESET_REASON = "tier_reset_reason"

# Columns read back for diagnostics and the manual override report
USER_BILLING_COLUMNS = (
    "id",
    "email",
    COL_TIER,
    COL_BILLING_PLAN,
    COL_BILLING_STATUS,
    COL_BILLING_PERIOD_END,
    COL_BILLING_CANCEL_AT_PERIOD_END,
    COL_SUBSCRIPTION_ID,
    COL_CUSTOMER_ID,
)

# Fast-path cache (Clerk public_metadata)
META_TIER = "tier"
META_BILLING_STATUS = "billingStatus"
META_BILLING_PERIOD_END = "billingPeriodEnd"
META_CANCEL_AT_PERIOD_END = "cancelAtPeriodEnd"

# Key under which checkout stores our user id on Stripe objects
STRIPE_USER_ID_METADATA_KEY = "userId"

# Invoice statuses that block paid access
# Stripe subscription statuses that grant paid access
PAYING_STATUSES = ("active", "trialing")

UNPAID_INVOICE_STATUSES = ("open", "uncollectible")
