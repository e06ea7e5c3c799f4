"""
Mobility Risk Agent - FastAPI Application

This module provides the REST API for the mobility risk service. It exposes
endpoints for assessing immobility harms and prescribing bedside cycling for
one patient or a whole unit.

================================================================================
API DESIGN FOR CLINICAL DECISION SUPPORT
================================================================================

This API is designed for integration with:
1. Nursing dashboards showing per-patient immobility risk
2. Therapy workflows that turn the prescription into daily goals
3. Report generators that read the outcome probabilities
4. The central orchestrator for multi-agent coordination

Key Design Principles:
─────────────────────
1. EXPLAINABILITY: Every outcome lists the factors that drove it
2. DETERMINISM: Same snapshot, same answer
3. NO AUTONOMOUS ACTION: API provides recommendations, not orders
4. BATCH SUPPORT: Assess a whole unit in one call for rounds

================================================================================
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .calibration import Outcome, RiskLevel
from .config import settings
from .features import InvalidAssessmentInput
from .model import RiskCalculator, load_stay_predictor

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# =============================================================================
# PYDANTIC MODELS (Request/Response Schemas)
# =============================================================================

class AssessmentRequest(BaseModel):
    """
    Patient snapshot for one assessment.

    Categorical values are checked by the calculator so that aliases such as
    "M" or "step_down" are accepted; unknown values return 422.
    """

    model_config = ConfigDict(extra="allow")

    age: float = Field(
        ...,
        ge=0,
        le=130,
        description="Patient age in years"
    )
    sex: str = Field(
        ...,
        description="male, female or other (m/f accepted)"
    )
    level_of_care: str = Field(
        ...,
        description="icu, stepdown, ward or rehab"
    )
    mobility_status: str = Field(
        ...,
        description="bedbound, chair_bound, standing_assist, walking_assist or independent"
    )
    cognitive_status: Optional[str] = Field(
        default=None,
        description="normal, mild_impairment or delirium_dementia (default normal)"
    )
    baseline_function: Optional[str] = Field(
        default=None,
        description="independent, walker or dependent (default independent)"
    )
    weight_kg: Optional[float] = Field(
        default=None,
        description="Body weight in kilograms"
    )
    height_cm: Optional[float] = Field(
        default=None,
        description="Height in centimetres"
    )
    admission_diagnosis: Optional[str] = Field(
        default=None,
        description="Free-text admission diagnosis"
    )
    comorbidities: List[str] = Field(default_factory=list)
    medications: List[str] = Field(default_factory=list)
    devices: List[str] = Field(default_factory=list)
    days_immobile: float = Field(
        default=0,
        ge=0,
        description="Days with minimal or no mobility"
    )
    los_expected_days: Optional[float] = Field(
        default=None,
        description="Expected length of stay, forwarded to stay predictions"
    )

    incontinent: bool = False
    albumin_low: bool = False
    on_vte_prophylaxis: bool = Field(
        default=True,
        description="Receiving VTE prophylaxis (assumed unless explicitly false)"
    )
    on_sedating_medications: Optional[bool] = None
    on_anticoagulants: Optional[bool] = None
    on_steroids: Optional[bool] = None

    has_diabetes: bool = False
    has_malnutrition: bool = False
    has_obesity: bool = False
    has_neuropathy: bool = False
    has_parkinson: bool = False
    has_stroke_history: bool = False
    has_active_cancer: bool = False
    has_vte_history: bool = False

    is_postoperative: bool = False
    is_trauma_admission: bool = False
    is_sepsis: bool = False
    is_cardiac_admission: bool = False
    is_neuro_admission: bool = False
    is_orthopedic: bool = False
    is_oncology: bool = False

    has_foley_catheter: bool = False
    has_central_line: bool = False
    has_feeding_tube: bool = False
    has_ventilator: bool = False

    def to_snapshot(self) -> Dict[str, Any]:
        """Fields the caller actually sent, plus any extra keys."""
        return self.model_dump(exclude_unset=True)


class BatchAssessmentRequest(BaseModel):
    """Request schema for batch assessment."""

    patients: List[AssessmentRequest] = Field(
        ...,
        min_length=1,
        description="Patients to assess"
    )


class OutcomeResponse(BaseModel):
    """Response schema for one outcome."""

    probability: float
    odds_ratio_vs_mobile: float
    risk_level: str
    contributing_factors: List[str]


class MobilityRecommendationResponse(BaseModel):
    """Response schema for the cycling prescription."""

    watt_goal: float
    duration_min_per_session: int
    sessions_per_day: int
    total_daily_energy: int
    notes: str
    debug: Dict[str, Any]


class AssessmentResponse(BaseModel):
    """
    Response schema for one assessment.

    Keys added by the stay-prediction extension are passed through.
    """

    model_config = ConfigDict(extra="allow")

    request_id: str
    assessed_at: datetime
    deconditioning: OutcomeResponse
    vte: OutcomeResponse
    falls: OutcomeResponse
    pressure: OutcomeResponse
    mobility_recommendation: MobilityRecommendationResponse
    input_echo: Dict[str, Any]


class BatchAssessmentResponse(BaseModel):
    """Response schema for batch assessment."""

    request_id: str
    assessed_at: datetime
    total_patients: int
    skipped: int

    summary: Dict[str, Dict[str, int]] = Field(
        description="Per outcome, count of patients in each risk level"
    )
    results: List[AssessmentResponse]


class HealthResponse(BaseModel):
    """Response schema for health checks."""

    status: str
    service: str
    version: str
    timestamp: datetime
    checks: Dict[str, Dict[str, Any]]


# =============================================================================
# APPLICATION STATE
# =============================================================================

class AppState:
    """
    Application state management.

    Holds the risk calculator and tracks assessment counts.
    """

    def __init__(self):
        self.calculator: Optional[RiskCalculator] = None
        self.started_at: Optional[datetime] = None
        self.assessments_performed: int = 0
        self._lock = asyncio.Lock()

    async def get_calculator(self) -> RiskCalculator:
        """Get or initialize the risk calculator."""
        async with self._lock:
            if self.calculator is None:
                self.calculator = RiskCalculator(
                    stay_predictor=load_stay_predictor(settings.stay_predictor_path)
                )
                self.started_at = datetime.now(timezone.utc)
                logger.info("RiskCalculator initialized")
            return self.calculator


# Global application state
app_state = AppState()


# =============================================================================
# LIFESPAN MANAGEMENT
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info(f"Starting {settings.service_name} v{settings.service_version}")
    await app_state.get_calculator()

    yield

    # Shutdown
    logger.info("Shutting down mobility risk agent")


# =============================================================================
# FASTAPI APPLICATION
# =============================================================================

app = FastAPI(
    title="Mobility Risk Agent",
    description="""
    Immobility harm assessment and bedside cycling prescription service.

    ## Overview
    For each patient the agent estimates four hospital-acquired harms driven by
    immobility and prescribes a safe cycle-ergometer dose.

    ## Outcomes
    - **Deconditioning**: functional decline from bed rest
    - **VTE**: venous thromboembolism
    - **Falls**: in-hospital falls
    - **Pressure**: pressure injury

    ## API Endpoints
    - `POST /assess`: Full assessment for one patient
    - `POST /assess/batch`: Assess a list of patients
    - `GET /calibration`: Read-only calibration table
    - `GET /health`: Service health check

    ## Clinical Integration
    This service is designed for clinical decision SUPPORT, not autonomous action.
    """,
    version=settings.service_version,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _build_response(result: Dict[str, Any], request_id: str) -> AssessmentResponse:
    return AssessmentResponse(
        request_id=request_id,
        assessed_at=datetime.now(timezone.utc),
        **result,
    )


def _empty_summary() -> Dict[str, Dict[str, int]]:
    return {
        outcome.value: {level.value: 0 for level in RiskLevel}
        for outcome in Outcome
    }


# =============================================================================
# ENDPOINTS
# =============================================================================

@app.get("/health", response_model=HealthResponse, tags=["Operations"])
async def health_check() -> HealthResponse:
    """
    Health check endpoint for Kubernetes probes.

    Checks that the calculator is available and its calibration is loaded.
    """
    calculator = await app_state.get_calculator()
    checks = {
        "calculator": {
            "status": "ok",
            "started_at": app_state.started_at.isoformat() if app_state.started_at else None,
            "assessments_performed": app_state.assessments_performed,
            "outcomes": [o.value for o in calculator.calibration.models],
        },
    }

    return HealthResponse(
        status="healthy",
        service=settings.service_name,
        version=settings.service_version,
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )


@app.post(
    "/assess",
    response_model=AssessmentResponse,
    tags=["Assessment"],
    summary="Assess one patient"
)
async def assess(request: AssessmentRequest, raw_request: Request) -> AssessmentResponse:
    """
    Assess one patient for immobility harms and prescribe cycling.

    **Returns:**
    - deconditioning, vte, falls, pressure: probability, odds ratio versus a
      fully mobile patient, risk level and contributing factors
    - mobility_recommendation: watt goal, duration, sessions, notes
    - input_echo: the request body exactly as received
    """
    request_id = str(uuid.uuid4())
    logger.info(f"Assessment request: {request_id}")

    body = await raw_request.json()
    calculator = await app_state.get_calculator()
    assessment = calculator.assess(request.to_snapshot(), echo=body)
    app_state.assessments_performed += 1

    return _build_response(assessment.to_dict(), request_id)


@app.post(
    "/assess/batch",
    response_model=BatchAssessmentResponse,
    tags=["Assessment"],
    summary="Assess a list of patients"
)
async def assess_batch(
    request: BatchAssessmentRequest,
    raw_request: Request,
) -> BatchAssessmentResponse:
    """
    Assess many patients in one call.

    Patients whose snapshot fails validation are skipped and counted in
    `skipped`. The batch size is limited by `MAX_BATCH_SIZE`.
    """
    if len(request.patients) > settings.max_batch_size:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=(
                f"Batch of {len(request.patients)} patients exceeds the limit "
                f"of {settings.max_batch_size}"
            ),
        )

    request_id = str(uuid.uuid4())
    logger.info(f"Batch assessment request: {request_id} ({len(request.patients)} patients)")

    body = await raw_request.json()
    calculator = await app_state.get_calculator()
    assessments = calculator.assess_batch(
        [p.to_snapshot() for p in request.patients],
        echoes=body["patients"],
    )
    app_state.assessments_performed += len(assessments)

    summary = _empty_summary()
    for assessment in assessments:
        for outcome, result in assessment.outcomes.items():
            summary[outcome.value][result.risk_level.value] += 1

    return BatchAssessmentResponse(
        request_id=request_id,
        assessed_at=datetime.now(timezone.utc),
        total_patients=len(assessments),
        skipped=len(request.patients) - len(assessments),
        summary=summary,
        results=[_build_response(a.to_dict(), request_id) for a in assessments],
    )


@app.get(
    "/calibration",
    tags=["Model"],
    summary="Read-only calibration table"
)
async def get_calibration() -> Dict[str, Any]:
    """
    Return the intercepts, weights (log-odds), interactions and risk bands
    used by every outcome model.
    """
    calculator = await app_state.get_calculator()
    return calculator.calibration.to_dict()


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

@app.exception_handler(InvalidAssessmentInput)
async def invalid_input_handler(request, exc: InvalidAssessmentInput):
    """Reject snapshots the calculator cannot normalize."""
    logger.warning(f"Invalid assessment input: {exc}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "invalid_assessment_input",
            "message": str(exc),
            "field": exc.field_name,
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle uncaught exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred",
            "detail": str(exc) if settings.debug else None,
        },
    )


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "mobility_risk.api:app",
        host=settings.api_host,
        port=settings.api_port,
        workers=settings.api_workers,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
