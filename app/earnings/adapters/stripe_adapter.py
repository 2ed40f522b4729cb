"""
Stripe API adapter for payout operations.

This module provides the StripeAdapter class which encapsulates all
Stripe API interactions used by the earnings app. All Stripe calls go
through this adapter to ensure consistent error handling, timeouts,
idempotency, and observability.

Features:
- Configurable timeouts on all API calls
- Automatic error translation to domain exceptions
- Structured logging with timing metrics
- Idempotency keys on money-moving calls
- Webhook verification against more than one signing secret

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_API_TIMEOUT_SECONDS: API call timeout
- STRIPE_MAX_RETRIES: Network-level retries inside the SDK

Usage:
    from earnings.adapters import StripeAdapter, IdempotencyKeyGenerator

    account = StripeAdapter.retrieve_account("acct_123")
    transfer = StripeAdapter.create_transfer(
        amount_cents=12500,
        destination_account="acct_123",
        idempotency_key=IdempotencyKeyGenerator.generate(
            "payout-transfer", payout.id, payout.retry_count
        ),
        metadata={"payout_id": str(payout.id)},
    )
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import stripe
from django.conf import settings

from earnings.exceptions import (
    StripeAPIUnavailableError,
    StripeBalanceInsufficientError,
    StripeCardError,
    StripeError,
    StripeInvalidAccountError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeTimeoutError,
    WebhookVerificationError,
)
from earnings.state_machines import FailureReason

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class AccountResult:
    """
    Connected account state relevant to payouts.

    Attributes:
        id: Account ID (acct_xxx)
        payouts_enabled: Whether Stripe allows payouts to the external account
    """

    id: str
    payouts_enabled: bool


@dataclass
class TransferResult:
    """
    Result from Stripe Transfer operations.

    Attributes:
        id: Transfer ID (tr_xxx)
        amount_cents: Amount transferred in cents
        currency: Currency code
        destination_account: Destination Stripe account ID
        metadata: Attached metadata
    """

    id: str
    amount_cents: int
    currency: str
    destination_account: str
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class PayoutResult:
    """
    Result from a Stripe Payout created on a connected account.

    Attributes:
        id: Payout ID (po_xxx)
        status: Stripe payout status (pending, in_transit, paid, failed)
        amount_cents: Amount in cents
        stripe_account: Connected account the payout was created on
        metadata: Attached metadata
    """

    id: str
    status: str
    amount_cents: int
    stripe_account: str
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class BalanceTransactionResult:
    """
    A balance transaction with its source object expanded.

    Used to trace legacy payout events back to the transfer that funded
    them; source_metadata is the source transfer's metadata.
    """

    id: str
    source_id: str | None
    source_metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class WebhookEndpointResult:
    """
    A Stripe webhook endpoint.

    The signing secret is only returned by Stripe when the endpoint is created.
    """

    id: str
    url: str
    created: int
    metadata: dict[str, str] = field(default_factory=dict)
    secret: str | None = None


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for Stripe API calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    The key is a pure function of its inputs, so a retried call for the same
    payout and retry count reuses the key and Stripe returns the original
    result instead of moving money twice.

    Example:
        key = IdempotencyKeyGenerator.generate(
            operation="payout-transfer",
            entity_id=payout.id,
            attempt=payout.retry_count,
        )
        # "payout-transfer:550e8400-e29b-41d4-a716-446655440000:0:a1b2c3d4"
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str,
        attempt: int = 0,
    ) -> str:
        entity_str = str(entity_id)
        # Short hash scoped to this deployment's SECRET_KEY
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]

        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    Adapter for Stripe API operations.

    All methods are classmethods - no instance state is maintained.
    Thread-safe for use from Celery workers.

    Usage:
        account = StripeAdapter.retrieve_account(account_id)
        transfer = StripeAdapter.create_transfer(...)
        payout = StripeAdapter.create_payout(...)
    """

    # =========================================================================
    # Configuration
    # =========================================================================

    @staticmethod
    def _configure_stripe() -> None:
        """Configure Stripe client with API key, timeout and SDK retries."""
        stripe.api_key = settings.STRIPE_SECRET_KEY
        stripe.max_network_retries = settings.STRIPE_MAX_RETRIES
        stripe.default_http_client = stripe.RequestsClient(
            timeout=settings.STRIPE_API_TIMEOUT_SECONDS
        )

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    def _execute(cls, log_context: dict[str, Any], call: Callable[[], Any]) -> Any:
        """
        Run a Stripe call with timing logs and error translation.

        Raises:
            StripeError: A domain exception describing the failure
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            response = call()
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "Stripe operation completed",
            extra={**log_context, "duration_ms": duration_ms},
        )
        return response

    # =========================================================================
    # Accounts
    # =========================================================================

    @classmethod
    def retrieve_account(cls, account_id: str) -> AccountResult:
        """
        Retrieve a connected account and whether it can receive payouts.

        Raises:
            StripeInvalidAccountError: Account does not exist or is not connected
        """
        account = cls._execute(
            {"operation": "retrieve_account", "account_id": account_id},
            lambda: stripe.Account.retrieve(account_id),
        )

        return AccountResult(
            id=account.id,
            payouts_enabled=bool(account.get("payouts_enabled")),
        )

    # =========================================================================
    # Money Movement
    # =========================================================================

    @classmethod
    def create_transfer(
        cls,
        amount_cents: int,
        destination_account: str,
        idempotency_key: str,
        currency: str = "usd",
        metadata: dict[str, str] | None = None,
    ) -> TransferResult:
        """
        Move funds from the platform balance to a connected account.

        Raises:
            StripeBalanceInsufficientError: Platform balance cannot cover it
            StripeInvalidAccountError: Invalid destination account
        """
        transfer = cls._execute(
            {
                "operation": "create_transfer",
                "amount_cents": amount_cents,
                "destination_account": destination_account,
                "idempotency_key": idempotency_key,
            },
            lambda: stripe.Transfer.create(
                amount=amount_cents,
                currency=currency,
                destination=destination_account,
                metadata=metadata or {},
                idempotency_key=idempotency_key,
            ),
        )

        return TransferResult(
            id=transfer.id,
            amount_cents=transfer.amount,
            currency=transfer.currency,
            destination_account=transfer.destination,
            metadata=dict(transfer.get("metadata") or {}),
        )

    @classmethod
    def create_payout(
        cls,
        amount_cents: int,
        stripe_account: str,
        idempotency_key: str,
        currency: str = "usd",
        metadata: dict[str, str] | None = None,
    ) -> PayoutResult:
        """
        Pay out from a connected account's balance to its bank account.

        Raises:
            StripeError: Any failure to start the payout
        """
        payout = cls._execute(
            {
                "operation": "create_payout",
                "amount_cents": amount_cents,
                "stripe_account": stripe_account,
                "idempotency_key": idempotency_key,
            },
            lambda: stripe.Payout.create(
                amount=amount_cents,
                currency=currency,
                metadata=metadata or {},
                stripe_account=stripe_account,
                idempotency_key=idempotency_key,
            ),
        )

        return PayoutResult(
            id=payout.id,
            status=payout.status,
            amount_cents=payout.amount,
            stripe_account=stripe_account,
            metadata=dict(payout.get("metadata") or {}),
        )

    @classmethod
    def retrieve_balance_transaction(
        cls, balance_transaction_id: str, stripe_account: str | None = None
    ) -> BalanceTransactionResult:
        """
        Retrieve a balance transaction with its source expanded.

        For a payout funded by one of our transfers, the source is the
        transfer and carries our metadata.
        """
        params: dict[str, Any] = {"expand": ["source"]}
        if stripe_account:
            params["stripe_account"] = stripe_account

        txn = cls._execute(
            {
                "operation": "retrieve_balance_transaction",
                "balance_transaction_id": balance_transaction_id,
                "stripe_account": stripe_account,
            },
            lambda: stripe.BalanceTransaction.retrieve(balance_transaction_id, **params),
        )

        source = txn.get("source")
        if isinstance(source, str) or source is None:
            return BalanceTransactionResult(id=txn.id, source_id=source)

        return BalanceTransactionResult(
            id=txn.id,
            source_id=source.get("id"),
            source_metadata=dict(source.get("metadata") or {}),
        )

    # =========================================================================
    # Webhook Endpoints
    # =========================================================================

    @classmethod
    def list_webhook_endpoints(cls) -> list[WebhookEndpointResult]:
        endpoints = cls._execute(
            {"operation": "list_webhook_endpoints"},
            lambda: list(stripe.WebhookEndpoint.list(limit=100).auto_paging_iter()),
        )
        return [
            WebhookEndpointResult(
                id=endpoint.id,
                url=endpoint.url,
                created=endpoint.created,
                metadata=dict(endpoint.get("metadata") or {}),
            )
            for endpoint in endpoints
        ]

    @classmethod
    def create_webhook_endpoint(
        cls,
        url: str,
        enabled_events: Iterable[str],
        connect: bool,
        metadata: dict[str, str] | None = None,
    ) -> WebhookEndpointResult:
        """
        Register a webhook endpoint.

        Args:
            connect: Receive events from connected accounts instead of
                the platform account
        """
        endpoint = cls._execute(
            {"operation": "create_webhook_endpoint", "url": url, "connect": connect},
            lambda: stripe.WebhookEndpoint.create(
                url=url,
                enabled_events=list(enabled_events),
                connect=connect,
                metadata=metadata or {},
            ),
        )
        return WebhookEndpointResult(
            id=endpoint.id,
            url=endpoint.url,
            created=endpoint.created,
            metadata=dict(endpoint.get("metadata") or {}),
            secret=endpoint.get("secret"),
        )

    @classmethod
    def delete_webhook_endpoint(cls, endpoint_id: str) -> None:
        cls._execute(
            {"operation": "delete_webhook_endpoint", "endpoint_id": endpoint_id},
            lambda: stripe.WebhookEndpoint.delete(endpoint_id),
        )

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    @classmethod
    def construct_event(
        cls,
        payload: bytes,
        signature: str,
        secrets: Iterable[str],
    ) -> dict[str, Any]:
        """
        Verify a webhook payload against each secret in turn.

        Args:
            payload: Raw webhook payload bytes
            signature: Stripe-Signature header value
            secrets: Candidate signing secrets (platform, connect)

        Returns:
            Parsed event data dict

        Raises:
            WebhookVerificationError: No secret verified the signature
        """
        errors = []
        for secret in secrets:
            if not secret:
                continue
            try:
                stripe.Webhook.construct_event(payload, signature, secret)
            except stripe.SignatureVerificationError as e:
                errors.append(str(e))
                continue
            except ValueError as e:
                raise WebhookVerificationError(
                    "Webhook payload is not valid JSON",
                    details={"error": str(e)},
                ) from e
            return json.loads(payload)

        raise WebhookVerificationError(
            "Invalid webhook signature",
            details={"errors": errors},
        )

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_stripe_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe exceptions to domain exceptions.

        Raises:
            StripeCardError: Destination instrument rejected the operation
            StripeBalanceInsufficientError: Platform balance too low
            StripeInvalidAccountError: Invalid Connect account
            StripeInvalidRequestError: Invalid request parameters
            StripeRateLimitError: Rate limited
            StripeTimeoutError: Request timed out
            StripeAPIUnavailableError: API unavailable
        """
        logger = cls.get_logger()

        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, StripeError):
            raise error

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None)
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "stripe_code": error.code, "decline_code": decline_code},
            )
            raise StripeCardError(
                str(error.user_message or error),
                stripe_code=error.code,
                decline_code=decline_code,
            ) from error

        elif isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )

            if error.code == FailureReason.BALANCE_INSUFFICIENT:
                raise StripeBalanceInsufficientError(
                    str(error.user_message or error),
                    stripe_code=error.code,
                ) from error

            if "account" in str(error).lower():
                raise StripeInvalidAccountError(
                    str(error),
                    stripe_code=error.code,
                ) from error

            raise StripeInvalidRequestError(
                str(error),
                stripe_code=error.code,
            ) from error

        elif isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise StripeRateLimitError(
                "Stripe rate limit exceeded. Please retry.",
                stripe_code="rate_limit",
            ) from error

        elif isinstance(error, stripe.APIConnectionError):
            logger.error(
                "Connection error to Stripe",
                extra=log_context,
                exc_info=True,
            )
            if "timed out" in str(error).lower():
                raise StripeTimeoutError(
                    "Stripe request timed out. Please retry.",
                    stripe_code="timeout",
                ) from error
            raise StripeAPIUnavailableError(
                "Could not connect to Stripe. Please retry.",
                stripe_code="api_connection_error",
            ) from error

        elif isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            raise StripeAPIUnavailableError(
                "Stripe service error. Please retry.",
                stripe_code="api_error",
            ) from error

        elif isinstance(error, stripe.AuthenticationError):
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise StripeAPIUnavailableError(
                "Stripe authentication failed",
                stripe_code="authentication_error",
            ) from error

        else:
            logger.error(
                f"Unexpected error from Stripe: {type(error).__name__}",
                extra=log_context,
                exc_info=True,
            )
            raise StripeAPIUnavailableError(
                f"Unexpected Stripe error: {error}",
                stripe_code="unknown_error",
            ) from error
