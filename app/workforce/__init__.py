"""
Workforce app: workers and the work items they complete.

The earnings app treats this app as its collaborator for:
    - Resolving a worker's Stripe Connect account and onboarding status
    - Reading completed, payable work items within a pay period
"""
