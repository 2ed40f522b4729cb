"""
Earnings services.

- failure_classifier: Reason code -> retry/notification policy
- payout_service.PayoutService: Aggregation, processing and failure handling
- recovery.BalanceRecoveryCoordinator: Re-drives payouts once the platform
  balance is replenished

Import from the submodules directly; the payout store imports the
classifier while models load.
"""
