from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from zhinao_geo.models.diagnosis_report import DiagnosisReport
from zhinao_geo.models.job import ACTIVE_STATUSES, JobStatus, ScanJob
from zhinao_geo.models.simulation_result import SimulationResult
from zhinao_geo.services.cache import TTLCache
from zhinao_geo.services.credits import InsufficientCreditsError, ensure_affordable, get_balance
from zhinao_geo.services.job_queries import get_owned_diagnosis, get_owned_scan_result
from zhinao_geo.services.webhook_client import ProxyClient
from zhinao_geo.services.webhook_gateway import INSUFFICIENT_CREDITS

logger = logging.getLogger(__name__)

DEFAULT_STRATEGY_ID = "geo_optimization"
CREATE_FAILED = "create_failed"


@dataclass(frozen=True)
class TriggerOutcome:
    success: bool
    record_id: str | None = None
    status: str | None = None
    error: str | None = None
    reused: bool = False
    webhook_ok: bool = True
    credits_required: int = 0
    balance: int | None = None


class JobTriggerService:
    """Creates a queued row, then asks the workflow engine to process it.

    The row is inserted before the engine is called so the tracker has
    something to watch. An engine-side credit rejection removes the row
    again; any other engine failure leaves it queued and is only logged.
    Database errors while creating the row come back as ``create_failed``.
    """

    def __init__(
        self,
        db: Session,
        proxy: ProxyClient,
        *,
        user_id: str,
        prices: Mapping[str, int] | None = None,
        cache: TTLCache | None = None,
    ) -> None:
        self.db = db
        self.proxy = proxy
        self.user_id = user_id
        self.prices = prices
        self.cache = cache

    def _check_credits(self, operation: str, unit_count: int = 1) -> tuple[int, TriggerOutcome | None]:
        balance = get_balance(self.db, self.user_id)
        try:
            required = ensure_affordable(balance, operation, unit_count, self.prices)
        except InsufficientCreditsError as exc:
            logger.info(
                "job_triggers.%s.insufficient user_id=%s required=%s balance=%s",
                operation,
                self.user_id,
                exc.required,
                exc.balance,
            )
            return exc.required, TriggerOutcome(
                success=False,
                error=INSUFFICIENT_CREDITS,
                credits_required=exc.required,
                balance=exc.balance,
            )
        return required, None

    def _insert(self, operation: str, row: Any) -> bool:
        try:
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("job_triggers.%s.create_failed user_id=%s error=%s", operation, self.user_id, type(exc).__name__)
            return False
        return True

    async def _dispatch(
        self,
        operation: str,
        row: Any,
        payload: dict[str, Any],
        required: int,
    ) -> TriggerOutcome:
        row_id = row.id
        result = await self.proxy.call(operation, payload)
        if not result.success and result.error == INSUFFICIENT_CREDITS:
            logger.info("job_triggers.%s.rejected_by_engine id=%s", operation, row_id)
            try:
                self.db.delete(row)
                self.db.commit()
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.error("job_triggers.%s.delete_failed id=%s error=%s", operation, row_id, type(exc).__name__)
            return TriggerOutcome(
                success=False,
                error=INSUFFICIENT_CREDITS,
                credits_required=required,
                balance=get_balance(self.db, self.user_id),
            )

        if not result.success:
            # the row stays queued; the engine may still pick it up
            logger.warning("job_triggers.%s.webhook_failed id=%s error=%s", operation, row.id, result.error)
        self._invalidate()
        return TriggerOutcome(
            success=True,
            record_id=row.id,
            status=row.status,
            webhook_ok=result.success,
            credits_required=required,
        )

    def _invalidate(self) -> None:
        if self.cache is None:
            return
        self.cache.invalidate("scan-jobs")
        self.cache.invalidate("diagnosis-reports")
        self.cache.invalidate("simulations")

    async def trigger_monitoring(
        self,
        *,
        brand_name: str,
        search_query: str,
        competitors: Sequence[str] | None,
        models: Sequence[str],
        target_region: str | None = None,
    ) -> TriggerOutcome:
        model_list = list(models)
        competitor_list = [c for c in (competitors or []) if c]
        required, refusal = self._check_credits("monitoring", len(model_list))
        if refusal is not None:
            return refusal

        job = ScanJob(
            user_id=self.user_id,
            brand_name=brand_name,
            search_query=search_query,
            competitors=competitor_list,
            selected_models=model_list,
            target_region=target_region,
            status=JobStatus.QUEUED.value,
        )
        if not self._insert("monitoring", job):
            return TriggerOutcome(success=False, error=CREATE_FAILED, credits_required=required)
        logger.info("job_triggers.monitoring.queued id=%s models=%s", job.id, len(model_list))

        payload = {
            "job_id": job.id,
            "brand_name": brand_name,
            "search_query": search_query,
            "competitors": ", ".join(competitor_list),
            "selected_models": ",".join(model_list),
        }
        return await self._dispatch("monitoring", job, payload, required)

    async def trigger_diagnosis(self, *, scan_result_id: str) -> TriggerOutcome:
        scan_result = get_owned_scan_result(self.db, self.user_id, scan_result_id)
        if scan_result is None:
            return TriggerOutcome(success=False, error="not_found")

        required, refusal = self._check_credits("diagnosis")
        if refusal is not None:
            return refusal

        report = DiagnosisReport(
            scan_result_id=scan_result.id,
            job_id=scan_result.job_id,
            status=JobStatus.QUEUED.value,
        )
        if not self._insert("diagnosis", report):
            return TriggerOutcome(success=False, error=CREATE_FAILED, credits_required=required)
        logger.info("job_triggers.diagnosis.queued id=%s scan_result_id=%s", report.id, scan_result.id)

        payload = {
            "diagnosis_id": report.id,
            "scan_result_id": scan_result.id,
            "job_id": scan_result.job_id,
        }
        return await self._dispatch("diagnosis", report, payload, required)

    def find_active_simulation(self, diagnosis_id: str) -> SimulationResult | None:
        return (
            self.db.query(SimulationResult)
            .filter(SimulationResult.diagnosis_id == diagnosis_id)
            .filter(SimulationResult.status.in_(sorted(ACTIVE_STATUSES)))
            .order_by(SimulationResult.created_at.desc())
            .first()
        )

    async def trigger_simulation(
        self,
        *,
        diagnosis_id: str,
        strategy_id: str = DEFAULT_STRATEGY_ID,
    ) -> TriggerOutcome:
        diagnosis = get_owned_diagnosis(self.db, self.user_id, diagnosis_id)
        if diagnosis is None:
            return TriggerOutcome(success=False, error="not_found")

        existing = self.find_active_simulation(diagnosis.id)
        if existing is not None:
            logger.info("job_triggers.simulation.reused id=%s diagnosis_id=%s", existing.id, diagnosis.id)
            return TriggerOutcome(success=True, record_id=existing.id, status=existing.status, reused=True)

        required, refusal = self._check_credits("simulation")
        if refusal is not None:
            return refusal

        simulation = SimulationResult(
            diagnosis_id=diagnosis.id,
            job_id=diagnosis.job_id,
            applied_strategy_id=strategy_id or DEFAULT_STRATEGY_ID,
            status=JobStatus.QUEUED.value,
        )
        if not self._insert("simulation", simulation):
            return TriggerOutcome(success=False, error=CREATE_FAILED, credits_required=required)
        logger.info("job_triggers.simulation.queued id=%s diagnosis_id=%s", simulation.id, diagnosis.id)

        payload = {
            "simulation_id": simulation.id,
            "diagnosis_id": diagnosis.id,
        }
        return await self._dispatch("simulation", simulation, payload, required)
