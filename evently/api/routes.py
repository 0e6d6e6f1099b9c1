"""
API routes for events, registrations, payments and settlements.

Domain errors raised by the engines are translated to HTTP responses by the
exception handler in ``evently.api.main``.
"""
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from evently.core.counter_audit import CounterAuditor
from evently.core.payment_reconciliation import PaymentReconciliationEngine
from evently.core.registration_engine import RegistrationEngine
from evently.database.models import RegistrationStatus
from evently.integrations.webhook_handler import SIGNATURE_HEADER, SettlementWebhookHandler
from evently.monitoring.health import HealthCheck

from .dependencies import (
    get_counter_auditor,
    get_current_user_id,
    get_health_check,
    get_payment_engine,
    get_registration_engine,
    get_webhook_handler,
)
from .schemas import (
    CounterAuditResponse,
    CreateEventRequest,
    EventResponse,
    HealthCheckResponse,
    PaymentCheckResponse,
    PaymentDetailResponse,
    PaymentResponse,
    PurchaseRequest,
    RegistrationResponse,
    SettlementResponse,
    UnregisterResponse,
)

logger = structlog.get_logger(__name__)

# Create routers
event_router = APIRouter(prefix="/events", tags=["events"])
user_router = APIRouter(prefix="/users", tags=["users"])
payment_router = APIRouter(prefix="/payments", tags=["payments"])
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])
monitoring_router = APIRouter(tags=["monitoring"])


@event_router.post(
    "",
    response_model=EventResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an event",
)
async def create_event(
    request: CreateEventRequest,
    user_id: str = Depends(get_current_user_id),
    engine: RegistrationEngine = Depends(get_registration_engine),
) -> Dict[str, Any]:
    """Create an event organized by the caller."""
    event = await engine.create_event(
        organizer_id=user_id,
        name=request.name,
        capacity=request.capacity,
        require_approval=request.require_approval,
        ticket_price=request.ticket_price,
    )
    logger.info("api_event_created", event_id=event["event_id"], organizer_id=user_id)
    return event


@event_router.get("/{event_id}", response_model=EventResponse, summary="Get an event")
async def get_event(
    event_id: str,
    engine: RegistrationEngine = Depends(get_registration_engine),
) -> Dict[str, Any]:
    return await engine.get_event(event_id)


@event_router.post(
    "/{event_id}/registrations",
    response_model=RegistrationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register for an event",
    description="Confirms immediately, or waits for approval if the event requires it",
)
async def register(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: RegistrationEngine = Depends(get_registration_engine),
) -> Dict[str, Any]:
    return await engine.register(event_id, user_id)


@event_router.delete(
    "/{event_id}/registrations",
    response_model=UnregisterResponse,
    summary="Cancel a registration",
)
async def unregister(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: RegistrationEngine = Depends(get_registration_engine),
) -> Dict[str, Any]:
    return await engine.unregister(event_id, user_id)


@event_router.get(
    "/{event_id}/registrations",
    response_model=List[RegistrationResponse],
    summary="List registrations (organizer only)",
)
async def list_registrations(
    event_id: str,
    registration_status: Optional[RegistrationStatus] = None,
    user_id: str = Depends(get_current_user_id),
    engine: RegistrationEngine = Depends(get_registration_engine),
) -> List[Dict[str, Any]]:
    return await engine.list_registrations(event_id, user_id, registration_status)


@event_router.get(
    "/{event_id}/registrations/me",
    response_model=RegistrationResponse,
    summary="Get my registration",
)
async def get_my_registration(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: RegistrationEngine = Depends(get_registration_engine),
) -> Dict[str, Any]:
    return await engine.get_registration(event_id, user_id)


@event_router.post(
    "/{event_id}/registrations/{registrant_id}/approve",
    response_model=RegistrationResponse,
    summary="Approve a pending registration",
)
async def approve(
    event_id: str,
    registrant_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: RegistrationEngine = Depends(get_registration_engine),
) -> Dict[str, Any]:
    return await engine.approve(event_id, registrant_id, actor_id=user_id)


@event_router.post(
    "/{event_id}/registrations/{registrant_id}/reject",
    response_model=RegistrationResponse,
    summary="Reject a pending registration",
)
async def reject(
    event_id: str,
    registrant_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: RegistrationEngine = Depends(get_registration_engine),
) -> Dict[str, Any]:
    return await engine.reject(event_id, registrant_id, actor_id=user_id)


@user_router.get(
    "/me/registrations",
    response_model=List[RegistrationResponse],
    summary="List my registrations",
)
async def list_my_registrations(
    user_id: str = Depends(get_current_user_id),
    engine: RegistrationEngine = Depends(get_registration_engine),
) -> List[Dict[str, Any]]:
    return await engine.list_user_registrations(user_id)


@payment_router.post(
    "",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a ticket purchase",
    description="Creates a PENDING payment; seats are counted when the payment settles",
)
async def initiate_purchase(
    request: PurchaseRequest,
    user_id: str = Depends(get_current_user_id),
    engine: PaymentReconciliationEngine = Depends(get_payment_engine),
) -> Dict[str, Any]:
    payment = await engine.initiate_purchase(
        event_id=request.event_id,
        user_id=user_id,
        quantity=request.quantity,
        payment_method=request.payment_method,
        buyer_name=request.buyer_name,
        buyer_email=request.buyer_email,
        buyer_phone=request.buyer_phone,
    )
    logger.info(
        "api_purchase_created",
        payment_id=payment["payment_id"],
        reference_id=payment["reference_id"],
    )
    return payment


@payment_router.get("/me", response_model=List[PaymentResponse], summary="List my payments")
async def list_my_payments(
    user_id: str = Depends(get_current_user_id),
    engine: PaymentReconciliationEngine = Depends(get_payment_engine),
) -> List[Dict[str, Any]]:
    return await engine.list_user_payments(user_id)


@payment_router.get(
    "/check/{event_id}",
    response_model=PaymentCheckResponse,
    summary="Check whether I paid for an event",
)
async def check_payment(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: PaymentReconciliationEngine = Depends(get_payment_engine),
) -> Dict[str, Any]:
    return await engine.has_paid(event_id, user_id)


@payment_router.get(
    "/{payment_id}",
    response_model=PaymentDetailResponse,
    summary="Get payment status",
)
async def get_payment(
    payment_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: PaymentReconciliationEngine = Depends(get_payment_engine),
) -> Dict[str, Any]:
    return await engine.get_payment(payment_id, actor_id=user_id)


@webhook_router.post(
    "/payments",
    response_model=SettlementResponse,
    summary="Payment gateway settlement callback",
    description="Idempotent; duplicate and out-of-order deliveries are folded safely",
)
async def payment_webhook(
    request: Request,
    signature: Optional[str] = Header(default=None, alias=SIGNATURE_HEADER),
    handler: SettlementWebhookHandler = Depends(get_webhook_handler),
) -> Dict[str, Any]:
    body = await request.body()
    result = await handler.handle(body, signature)
    logger.info(
        "api_webhook_processed",
        reference_id=result["reference_id"],
        outcome=result["outcome"],
    )
    return result


@admin_router.get(
    "/overbooked-settlements",
    response_model=List[PaymentResponse],
    summary="List overbooked settlements",
    description="Completed payments whose seats could not be reserved",
)
async def list_overbooked_settlements(
    engine: PaymentReconciliationEngine = Depends(get_payment_engine),
) -> List[Dict[str, Any]]:
    return await engine.list_overbooked_settlements()


@admin_router.post(
    "/overbooked-settlements/{reference_id}/retry",
    response_model=SettlementResponse,
    summary="Retry seat reservation for an overbooked settlement",
)
async def retry_overbooked_settlement(
    reference_id: str,
    engine: PaymentReconciliationEngine = Depends(get_payment_engine),
) -> Dict[str, Any]:
    return await engine.retry_overbooked_settlement(reference_id)


@admin_router.post(
    "/events/{event_id}/audit",
    response_model=CounterAuditResponse,
    summary="Audit an event's attendee counter",
)
async def audit_event(
    event_id: str,
    auditor: CounterAuditor = Depends(get_counter_auditor),
) -> Dict[str, Any]:
    return await auditor.audit_event(event_id)


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    try:
        return await health_check.check_all()
    except Exception as e:
        logger.error("health_check_error", error=str(e))
        return {"status": "unhealthy", "checks": {"error": str(e)}}


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
)
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
)
async def readiness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get("/metrics", summary="Prometheus metrics", include_in_schema=False)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
