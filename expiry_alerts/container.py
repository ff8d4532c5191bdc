"""
Service wiring
Builds the engine's collaborators once and hands them to the routes.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from expiry_alerts.config import Settings
from expiry_alerts.services.audit import NotificationAuditStore
from expiry_alerts.services.aggregation import AggregationRefresher
from expiry_alerts.services.dedup import DedupFlagStore
from expiry_alerts.services.dispatcher import BatchDispatcher
from expiry_alerts.services.email import EmailService
from expiry_alerts.services.orchestrator import CycleOrchestrator
from expiry_alerts.services.rate_limiter import RateLimiter
from expiry_alerts.services.scheduler import EngineScheduler


@dataclass
class EngineContainer:
    config: Settings
    flag_store: DedupFlagStore
    audit_store: NotificationAuditStore
    email_service: EmailService
    dispatcher: BatchDispatcher
    orchestrator: CycleOrchestrator
    refresher: AggregationRefresher
    scheduler: Optional[EngineScheduler] = None


def build_container(config: Settings) -> EngineContainer:
    flag_store = DedupFlagStore(claim_lease_seconds=config.CLAIM_LEASE_SECONDS)
    audit_store = NotificationAuditStore()
    email_service = EmailService(config)
    dispatcher = BatchDispatcher(
        flag_store=flag_store,
        audit_store=audit_store,
        email_service=email_service,
        rate_limiter=RateLimiter(config.SEND_MIN_INTERVAL_SECONDS),
        send_timeout=config.SEND_TIMEOUT_SECONDS,
        recipient_override=config.ALERT_RECIPIENT_OVERRIDE,
    )
    orchestrator = CycleOrchestrator(
        dispatcher=dispatcher,
        flag_store=flag_store,
        cycle_timeout=config.CYCLE_TIMEOUT_SECONDS,
    )
    refresher = AggregationRefresher()
    container = EngineContainer(
        config=config,
        flag_store=flag_store,
        audit_store=audit_store,
        email_service=email_service,
        dispatcher=dispatcher,
        orchestrator=orchestrator,
        refresher=refresher,
    )
    container.scheduler = EngineScheduler(config, orchestrator, refresher)
    return container


def get_container(request: Request) -> EngineContainer:
    """FastAPI dependency; tests override it with fakes"""
    return request.app.state.container
