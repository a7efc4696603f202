"""Membership lifecycle: plans, subscriptions, contracts, cancellations, plan changes."""
