"""
Earnings app: worker payouts through Stripe Connect.

Aggregates completed work into weekly payouts, moves money to workers'
connected accounts, and reconciles Stripe webhooks with the payout store.
"""
