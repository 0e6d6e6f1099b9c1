"""
FastAPI dependencies: caller identity and engine providers.

Token issuance and verification happen upstream; the gateway in front of this
service forwards the authenticated user as ``X-User-Id``.
"""
from functools import lru_cache
from typing import Optional

from fastapi import Header, HTTPException, status

from evently.core.counter_audit import CounterAuditor
from evently.core.payment_reconciliation import PaymentReconciliationEngine
from evently.core.registration_engine import RegistrationEngine
from evently.integrations.webhook_handler import SettlementWebhookHandler
from evently.monitoring.health import HealthCheck


async def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> str:
    """
    Resolve the authenticated caller.

    Raises:
        HTTPException: 401 if no identity was forwarded
    """
    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return x_user_id.strip()


@lru_cache()
def get_registration_engine() -> RegistrationEngine:
    return RegistrationEngine()


@lru_cache()
def get_payment_engine() -> PaymentReconciliationEngine:
    return PaymentReconciliationEngine()


@lru_cache()
def get_webhook_handler() -> SettlementWebhookHandler:
    return SettlementWebhookHandler(get_payment_engine())


@lru_cache()
def get_counter_auditor() -> CounterAuditor:
    return CounterAuditor()


@lru_cache()
def get_health_check() -> HealthCheck:
    return HealthCheck()
