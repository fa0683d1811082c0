from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from zhinao_geo.api.deps import get_cache, get_proxy_client
from zhinao_geo.core.database import get_db
from zhinao_geo.core.security import CurrentUser, get_current_user
from zhinao_geo.schemas.job import (
    DiagnosisCreate,
    DiagnosisReportResponse,
    ReportUpdate,
    ScanCreate,
    ScanJobResponse,
    SimulationCreate,
    SimulationResultResponse,
    TriggerResponse,
)
from zhinao_geo.services import job_queries
from zhinao_geo.services.cache import TTLCache, cache_key
from zhinao_geo.services.job_triggers import CREATE_FAILED, JobTriggerService, TriggerOutcome
from zhinao_geo.services.webhook_client import ProxyClient
from zhinao_geo.services.webhook_gateway import INSUFFICIENT_CREDITS

router = APIRouter()


def _trigger_service(
    request: Request,
    db: Session,
    proxy: ProxyClient,
    current_user: CurrentUser,
    cache: TTLCache,
) -> JobTriggerService:
    return JobTriggerService(
        db,
        proxy,
        user_id=current_user.id,
        prices=request.app.state.settings.credit_prices(),
        cache=cache,
    )


def _to_response(outcome: TriggerOutcome) -> TriggerResponse:
    if outcome.error == "not_found":
        raise HTTPException(status_code=404, detail="Not found")
    if outcome.error == INSUFFICIENT_CREDITS:
        raise HTTPException(
            status_code=402,
            detail={
                "error": INSUFFICIENT_CREDITS,
                "required": outcome.credits_required,
                "balance": outcome.balance,
            },
        )
    if outcome.error == CREATE_FAILED:
        raise HTTPException(status_code=500, detail="Could not create job")
    if not outcome.success or outcome.record_id is None:
        raise HTTPException(status_code=502, detail=outcome.error or "Trigger failed")
    return TriggerResponse(
        id=outcome.record_id,
        status=outcome.status or "queued",
        reused=outcome.reused,
        webhook_ok=outcome.webhook_ok,
        credits_required=outcome.credits_required,
    )


@router.post("/scans", response_model=TriggerResponse)
async def create_scan(
    body: ScanCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    proxy: ProxyClient = Depends(get_proxy_client),
    cache: TTLCache = Depends(get_cache),
):
    service = _trigger_service(request, db, proxy, current_user, cache)
    outcome = await service.trigger_monitoring(
        brand_name=body.brand_name,
        search_query=body.search_query,
        competitors=body.competitor_list(),
        models=body.models,
    )
    return _to_response(outcome)


@router.get("/scans", response_model=List[ScanJobResponse])
async def list_scans(
    limit: int = 20,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    cache: TTLCache = Depends(get_cache),
):
    limit = max(1, min(limit, 100))

    def load() -> list[dict]:
        jobs = job_queries.list_jobs(db, current_user.id, limit)
        return [ScanJobResponse.model_validate(j).model_dump(mode="json") for j in jobs]

    return cache.get_or_set(cache_key("scan-jobs", current_user.id, limit), load)


@router.get("/scans/{job_id}", response_model=ScanJobResponse)
async def get_scan(
    job_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    job = job_queries.get_owned_job(db, current_user.id, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Scan not found")
    return job


@router.put("/scans/{job_id}/report")
async def update_scan_report(
    job_id: str,
    body: ReportUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    cache: TTLCache = Depends(get_cache),
) -> dict:
    updated = job_queries.update_report_content(db, current_user.id, job_id, body.content)
    if updated is None:
        raise HTTPException(status_code=404, detail="Scan not found")
    cache.invalidate("scan-jobs")
    return {"job_id": job_id, "updated": updated}


@router.post("/diagnoses", response_model=TriggerResponse)
async def create_diagnosis(
    body: DiagnosisCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    proxy: ProxyClient = Depends(get_proxy_client),
    cache: TTLCache = Depends(get_cache),
):
    service = _trigger_service(request, db, proxy, current_user, cache)
    outcome = await service.trigger_diagnosis(scan_result_id=body.scan_result_id)
    return _to_response(outcome)


@router.get("/diagnoses/latest", response_model=DiagnosisReportResponse)
async def latest_diagnosis(
    scan_result_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    report = job_queries.latest_diagnosis_for_result(db, current_user.id, scan_result_id)
    if not report:
        raise HTTPException(status_code=404, detail="Diagnosis not found")
    return report


@router.get("/diagnoses/{diagnosis_id}", response_model=DiagnosisReportResponse)
async def get_diagnosis(
    diagnosis_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    report = job_queries.get_owned_diagnosis(db, current_user.id, diagnosis_id)
    if not report:
        raise HTTPException(status_code=404, detail="Diagnosis not found")
    return report


@router.post("/simulations", response_model=TriggerResponse)
async def create_simulation(
    body: SimulationCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    proxy: ProxyClient = Depends(get_proxy_client),
    cache: TTLCache = Depends(get_cache),
):
    service = _trigger_service(request, db, proxy, current_user, cache)
    outcome = await service.trigger_simulation(diagnosis_id=body.diagnosis_id, strategy_id=body.strategy_id)
    return _to_response(outcome)


@router.get("/simulations/latest", response_model=SimulationResultResponse)
async def latest_simulation(
    diagnosis_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    simulation = job_queries.latest_simulation_for_diagnosis(db, current_user.id, diagnosis_id)
    if not simulation:
        raise HTTPException(status_code=404, detail="Simulation not found")
    return simulation


@router.get("/simulations/{simulation_id}", response_model=SimulationResultResponse)
async def get_simulation(
    simulation_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    simulation = job_queries.get_owned_simulation(db, current_user.id, simulation_id)
    if not simulation:
        raise HTTPException(status_code=404, detail="Simulation not found")
    return simulation
