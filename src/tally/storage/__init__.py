"""Billing record storage and declarative metric queries."""

from .billing_store import BillingStore, StoreError, create_billing_store
from .queries import active_subscriptions_with_sql, revenue_with_sql, subscriptions_with_sql

__all__ = [
    "BillingStore",
    "StoreError",
    "active_subscriptions_with_sql",
    "create_billing_store",
    "revenue_with_sql",
    "subscriptions_with_sql",
]
