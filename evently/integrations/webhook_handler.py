"""
Settlement webhook handler with signature verification and delivery deduplication.

Implements:
- HMAC-SHA256 signature verification (when a webhook secret is configured)
- Callback parsing with the gateway's field names
- Delivery deduplication using Redis (optional, fail-open)
- Hand-off to the payment reconciliation engine

The Redis cache only saves work. The payment ledger's conditional status
transition is what guarantees a settlement is applied once.
"""
import hashlib
import hmac
from typing import TYPE_CHECKING, Any, Dict, Optional

import redis.asyncio as aioredis
import structlog
from pydantic import AliasChoices, BaseModel, Field, ValidationError

from evently.config import get_settings
from evently.core.errors import InvalidCallback, InvalidSignature
from evently.monitoring.metrics import metrics

if TYPE_CHECKING:
    from evently.core.payment_reconciliation import PaymentReconciliationEngine

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-Callback-Signature"


class SettlementCallback(BaseModel):
    """Gateway callback body."""

    reference_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("reference_id", "referenceId", "ref_id"),
    )
    status: str = Field(min_length=1)
    trx_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("trx_id", "trxId", "transaction_id"),
    )


class SettlementWebhookHandler:
    """
    Handles settlement callbacks from the payment gateway.

    Features:
    - Signature verification using a shared secret
    - Delivery deduplication keyed on (reference, status, transaction id)
    - Idempotent application through the reconciliation engine
    """

    def __init__(
        self,
        reconciliation_engine: "PaymentReconciliationEngine",
        redis_client: Optional[aioredis.Redis] = None,
    ):
        """
        Initialize webhook handler.

        Args:
            reconciliation_engine: Engine applying settlements
            redis_client: Optional Redis client for delivery deduplication
        """
        self.settings = get_settings()
        self.reconciliation_engine = reconciliation_engine
        self.redis_client = redis_client
        self._owns_redis = False

        logger.info(
            "webhook_handler_initialized",
            signed=self.settings.webhook_secret is not None,
            dedup_enabled=redis_client is not None or self.settings.redis_url is not None,
        )

    def _ensure_redis(self) -> Optional[aioredis.Redis]:
        """Return the dedup client, creating it from settings if configured."""
        if self.redis_client is None and self.settings.redis_url:
            self.redis_client = aioredis.from_url(
                self.settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            self._owns_redis = True
        return self.redis_client

    @staticmethod
    def compute_signature(payload: bytes, secret: str) -> str:
        return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()

    def verify_signature(
        self, payload: bytes, signature: Optional[str], secret: Optional[str] = None
    ) -> None:
        """
        Verify the callback signature.

        Unsigned callbacks are accepted only when no secret is configured.

        Raises:
            InvalidSignature: If the signature is missing or wrong
        """
        webhook_secret = secret or self.settings.webhook_secret
        if not webhook_secret:
            return

        if not signature:
            logger.warning("webhook_signature_missing")
            raise InvalidSignature("Missing callback signature")

        expected = self.compute_signature(payload, webhook_secret)
        if not hmac.compare_digest(expected, signature.strip().lower()):
            logger.error("webhook_signature_verification_failed")
            raise InvalidSignature()

        logger.info("webhook_signature_verified")

    @staticmethod
    def parse_callback(payload: bytes) -> SettlementCallback:
        """
        Parse a raw callback body.

        Raises:
            InvalidCallback: If the body is not a valid callback
        """
        try:
            return SettlementCallback.model_validate_json(payload)
        except ValidationError as e:
            logger.warning("webhook_payload_invalid", errors=e.error_count())
            raise InvalidCallback(
                f"Malformed settlement callback: {e.error_count()} error(s)"
            ) from e

    @staticmethod
    def _delivery_key(callback: SettlementCallback) -> str:
        status = callback.status.strip().lower()
        return f"settlement:processed:{callback.reference_id}:{status}:{callback.trx_id or '-'}"

    async def is_delivery_processed(self, callback: SettlementCallback) -> bool:
        """
        Check if this delivery has already been applied.

        Returns:
            bool: True if seen before, False otherwise or if Redis is unavailable
        """
        redis = self._ensure_redis()
        if redis is None:
            return False

        key = self._delivery_key(callback)
        try:
            return bool(await redis.exists(key))
        except Exception as e:
            logger.warning("webhook_dedup_check_error", error=str(e), key=key)
            # If Redis is down, fall through to the database guard
            return False

    async def mark_delivery_processed(
        self, callback: SettlementCallback, ttl_seconds: Optional[int] = None
    ) -> None:
        redis = self._ensure_redis()
        if redis is None:
            return

        key = self._delivery_key(callback)
        ttl = ttl_seconds or self.settings.settlement_dedup_ttl_seconds
        try:
            await redis.set(key, "1", ex=ttl)
            logger.info("webhook_delivery_marked_processed", key=key)
        except Exception as e:
            logger.warning("webhook_mark_processed_error", error=str(e), key=key)

    async def handle(self, payload: bytes, signature: Optional[str] = None) -> Dict[str, Any]:
        """
        Verify, parse and apply one callback delivery.

        Args:
            payload: Raw request body
            signature: Value of the signature header, if any

        Returns:
            Dict[str, Any]: Settlement outcome

        Raises:
            InvalidSignature: If verification fails
            InvalidCallback: If the body cannot be parsed
            PaymentNotFound: If the reference is unknown
        """
        self.verify_signature(payload, signature)
        callback = self.parse_callback(payload)

        logger.info(
            "processing_settlement_callback",
            reference_id=callback.reference_id,
            status=callback.status,
            trx_id=callback.trx_id,
        )

        if await self.is_delivery_processed(callback):
            metrics.record_settlement("duplicate", 0.0)
            logger.info("settlement_callback_already_processed", reference_id=callback.reference_id)
            return {
                "reference_id": callback.reference_id,
                "outcome": "duplicate",
                "message": "Delivery already processed",
            }

        result = await self.reconciliation_engine.apply_settlement(
            callback.reference_id, callback.status, callback.trx_id
        )
        await self.mark_delivery_processed(callback)
        return result

    async def close(self) -> None:
        """Close the Redis connection if this handler opened it."""
        if self.redis_client is not None and self._owns_redis:
            await self.redis_client.aclose()
            self.redis_client = None
            self._owns_redis = False
