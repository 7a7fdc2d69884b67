# ============================================================
# main.py — Escalation Engine Backend API
# ============================================================

from fastapi import FastAPI, HTTPException, Query, Request, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import List, Optional
import logging
import secrets
import traceback

from config import Settings, get_settings
from clock import Clock, SystemClock
from models import (
    EscalationCheckRequest, EscalationCheckResponse, EscalationStats,
    EscalationEvent, EscalationOutcome, EmergencyLog, PauseRequest,
    ResumeRequest, ManualEscalationRequest, ResolutionRequest, TimerResponse,
    EscalationStatus
)
from errors import EscalationPersistenceError, IncidentNotFoundError
from database import build_engine, build_session_factory, create_tables, run_schema_migrations
from repository import Repository
from sla import SLAResolver
from supervisors import SupervisorDirectory
from channels import HttpGateway, build_channel_tiers
from cascade import CascadeDispatcher
from emergency import EmergencyFailoverController, EmergencyServicesClient
from reporter import EscalationReporter
from escalation_engine import EscalationStateMachine
from guards import EscalationRateLimiter

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Incident Escalation Engine",
    description="Timer-driven incident escalation with fallback notification and emergency failover",
    version="1.0.0"
)

# CORS for the operator dashboard
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

bearer = HTTPBearer(auto_error=False)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler to return detailed errors"""
    logger.error(f"Global exception: {str(exc)}")
    logger.error(traceback.format_exc())

    return JSONResponse(
        status_code=500,
        content={
            "detail": str(exc),
            "type": exc.__class__.__name__,
            "message": "Internal server error occurred. Check server logs for details."
        }
    )


@app.exception_handler(EscalationPersistenceError)
async def persistence_exception_handler(request: Request, exc: EscalationPersistenceError):
    return JSONResponse(
        status_code=503,
        content={
            "detail": str(exc),
            "type": exc.__class__.__name__,
            "message": "Escalation state unavailable. The next scheduled check will retry."
        }
    )


@app.exception_handler(IncidentNotFoundError)
async def not_found_exception_handler(request: Request, exc: IncidentNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.on_event("startup")
async def startup():
    """Wire the engine against the configured database and gateway"""
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    engine = build_engine(settings.database_url)
    try:
        await create_tables(engine)
        await run_schema_migrations(engine)
        logger.info("✅ Database connection successful")
    except Exception as e:
        logger.error(f"❌ Database initialization failed: {e}")
        logger.error(traceback.format_exc())

    clock = SystemClock()
    repo = Repository(build_session_factory(engine))
    gateway = HttpGateway(
        settings.notification_gateway_url,
        token=settings.notification_gateway_token,
        timeout_seconds=settings.channel_timeout_seconds
    )
    reporter = EscalationReporter(repo)

    app.state.db_engine = engine
    app.state.gateway = gateway
    app.state.clock = clock
    app.state.reporter = reporter
    app.state.rate_limiter = EscalationRateLimiter()
    app.state.state_machine = EscalationStateMachine(
        repo=repo,
        sla=SLAResolver(repo),
        directory=SupervisorDirectory(repo),
        dispatcher=CascadeDispatcher(
            build_channel_tiers(gateway, repo, settings.visual_display_targets),
            clock,
            timeout_seconds=settings.channel_timeout_seconds
        ),
        failover=EmergencyFailoverController(
            repo,
            EmergencyServicesClient(gateway),
            settings.emergency_protocols
        ),
        reporter=reporter
    )

    logger.info("✅ Escalation Engine initialized")


@app.on_event("shutdown")
async def shutdown():
    gateway = getattr(app.state, "gateway", None)
    if gateway:
        await gateway.close()
    engine = getattr(app.state, "db_engine", None)
    if engine:
        await engine.dispose()


# ─────────────────────────────────────────────
# DEPENDENCIES
# ─────────────────────────────────────────────

async def require_caller(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    settings: Settings = Depends(get_settings)
):
    """Reject the call before any engine logic runs unless the bearer token matches"""
    if not settings.api_token:
        logger.warning("⚠️ Rejected escalation call: ESCALATION_API_TOKEN not configured")
        raise HTTPException(status_code=401, detail="Unauthorized")

    if credentials is None or not secrets.compare_digest(
        credentials.credentials.encode(), settings.api_token.encode()
    ):
        raise HTTPException(status_code=401, detail="Unauthorized")


def get_state_machine(request: Request) -> EscalationStateMachine:
    return request.app.state.state_machine


def get_reporter(request: Request) -> EscalationReporter:
    return request.app.state.reporter


def get_clock(request: Request) -> Clock:
    return request.app.state.clock


def get_rate_limiter(request: Request) -> EscalationRateLimiter:
    return request.app.state.rate_limiter


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "operational", "service": "escalation-engine"}


# ─────────────────────────────────────────────
# ESCALATION CHECK (scheduler entry point)
# ─────────────────────────────────────────────

@app.post(
    "/escalation-check",
    response_model=EscalationCheckResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(require_caller)]
)
async def run_escalation_check(
    request: Optional[EscalationCheckRequest] = None,
    machine: EscalationStateMachine = Depends(get_state_machine),
    reporter: EscalationReporter = Depends(get_reporter),
    clock: Clock = Depends(get_clock)
):
    """Scan for due incidents and escalate them (or only list them on dryRun)"""
    request = request or EscalationCheckRequest()
    result = await machine.run_check(clock.now(), event_id=request.event_id, dry_run=request.dry_run)

    ids = result.due_incident_ids if request.dry_run else result.escalated_incident_ids
    stats = await reporter.get_stats(request.event_id) if request.event_id else None

    return EscalationCheckResponse(
        escalated_incidents=len(ids),
        escalated_incident_ids=ids,
        stats=stats
    )


@app.get(
    "/escalation-check",
    response_model=EscalationStats,
    dependencies=[Depends(require_caller)]
)
async def get_escalation_stats(
    event_id: str = Query(..., alias="eventId"),
    reporter: EscalationReporter = Depends(get_reporter)
):
    """Escalation statistics for an event, without running escalation"""
    return await reporter.get_stats(event_id)


# ─────────────────────────────────────────────
# TIMER CONTROL
# ─────────────────────────────────────────────

@app.post(
    "/incidents/{incident_id}/escalation/arm",
    response_model=TimerResponse,
    dependencies=[Depends(require_caller)]
)
async def arm_escalation(
    incident_id: str,
    machine: EscalationStateMachine = Depends(get_state_machine),
    clock: Clock = Depends(get_clock)
):
    incident = await machine.arm(incident_id, clock.now())
    return TimerResponse(
        incident_id=incident.id,
        escalate_at=incident.escalate_at,
        escalated=incident.escalated,
        escalation_level=incident.escalation_level
    )


@app.post(
    "/incidents/{incident_id}/escalation/pause",
    response_model=TimerResponse,
    dependencies=[Depends(require_caller)]
)
async def pause_escalation(
    incident_id: str,
    request: PauseRequest,
    machine: EscalationStateMachine = Depends(get_state_machine),
    clock: Clock = Depends(get_clock)
):
    incident = await machine.pause(incident_id, request.paused_by, clock.now())
    return TimerResponse(
        incident_id=incident.id,
        escalate_at=incident.escalate_at,
        escalated=incident.escalated,
        escalation_level=incident.escalation_level
    )


@app.post(
    "/incidents/{incident_id}/escalation/resume",
    response_model=TimerResponse,
    dependencies=[Depends(require_caller)]
)
async def resume_escalation(
    incident_id: str,
    request: ResumeRequest,
    machine: EscalationStateMachine = Depends(get_state_machine),
    clock: Clock = Depends(get_clock)
):
    incident = await machine.resume(
        incident_id, request.resumed_by, clock.now(), request.extra_minutes
    )
    return TimerResponse(
        incident_id=incident.id,
        escalate_at=incident.escalate_at,
        escalated=incident.escalated,
        escalation_level=incident.escalation_level
    )


# ─────────────────────────────────────────────
# MANUAL ESCALATION & HISTORY
# ─────────────────────────────────────────────

@app.post(
    "/incidents/{incident_id}/escalate",
    response_model=EscalationOutcome,
    dependencies=[Depends(require_caller)]
)
async def escalate_incident(
    incident_id: str,
    request: ManualEscalationRequest,
    machine: EscalationStateMachine = Depends(get_state_machine),
    clock: Clock = Depends(get_clock),
    limiter: EscalationRateLimiter = Depends(get_rate_limiter)
):
    """Escalate one level on behalf of a named supervisor"""
    now = clock.now()
    if not await limiter.acquire(incident_id, now):
        logger.warning(f"⚠️ Manual escalation rate limit hit for incident {incident_id}")
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded for this incident. Try again in one hour."
        )

    outcome = await machine.escalate(
        incident_id, now, escalated_by=request.escalated_by, notes=request.notes
    )
    if outcome.status == EscalationStatus.NOT_FOUND:
        raise HTTPException(status_code=404, detail="Incident not found")
    if outcome.status == EscalationStatus.CONFLICT:
        raise HTTPException(status_code=409, detail="Incident was escalated concurrently")
    return outcome


@app.get(
    "/incidents/{incident_id}/escalations",
    response_model=List[EscalationEvent],
    dependencies=[Depends(require_caller)]
)
async def get_escalation_history(
    incident_id: str,
    reporter: EscalationReporter = Depends(get_reporter)
):
    return await reporter.get_history(incident_id)


@app.post(
    "/escalations/{escalation_id}/resolution",
    dependencies=[Depends(require_caller)]
)
async def record_resolution(
    escalation_id: str,
    request: ResolutionRequest,
    reporter: EscalationReporter = Depends(get_reporter)
):
    """Backfill how long the escalation took to be handled"""
    updated = await reporter.record_resolution(escalation_id, request.resolution_minutes)
    if not updated:
        raise HTTPException(
            status_code=409,
            detail="Escalation not found or resolution time already recorded"
        )
    return {"status": "recorded", "id": escalation_id}


@app.get(
    "/events/{event_id}/emergency-logs",
    response_model=List[EmergencyLog],
    dependencies=[Depends(require_caller)]
)
async def get_emergency_logs(
    event_id: str,
    reporter: EscalationReporter = Depends(get_reporter)
):
    return await reporter.get_emergency_logs(event_id)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
