from __future__ import annotations

from typing import Any, Callable

from sqlalchemy import inspect
from sqlalchemy.orm import Session, selectinload, sessionmaker

from zhinao_geo.models.diagnosis_report import DiagnosisReport
from zhinao_geo.models.job import ScanJob
from zhinao_geo.models.scan_result import ScanResult
from zhinao_geo.models.simulation_result import SimulationResult


def row_to_dict(obj: Any) -> dict[str, Any]:
    return {attr.key: getattr(obj, attr.key) for attr in inspect(obj).mapper.column_attrs}


def scan_job_to_dict(job: ScanJob) -> dict[str, Any]:
    """Job columns plus its per-model results, the shape a finished scan is shown in."""
    row = row_to_dict(job)
    row["results"] = [row_to_dict(r) for r in job.results]
    return row


def list_jobs(db: Session, user_id: str, limit: int = 20) -> list[ScanJob]:
    limit = max(1, min(int(limit or 20), 100))
    return (
        db.query(ScanJob)
        .options(selectinload(ScanJob.results))
        .filter(ScanJob.user_id == user_id)
        .order_by(ScanJob.created_at.desc(), ScanJob.id.desc())
        .limit(limit)
        .all()
    )


def get_owned_job(db: Session, user_id: str, job_id: str) -> ScanJob | None:
    return db.query(ScanJob).filter(ScanJob.id == job_id, ScanJob.user_id == user_id).first()


def get_owned_scan_result(db: Session, user_id: str, scan_result_id: str) -> ScanResult | None:
    return (
        db.query(ScanResult)
        .join(ScanJob, ScanJob.id == ScanResult.job_id)
        .filter(ScanResult.id == scan_result_id, ScanJob.user_id == user_id)
        .first()
    )


def get_owned_diagnosis(db: Session, user_id: str, diagnosis_id: str) -> DiagnosisReport | None:
    return (
        db.query(DiagnosisReport)
        .join(ScanResult, ScanResult.id == DiagnosisReport.scan_result_id)
        .join(ScanJob, ScanJob.id == ScanResult.job_id)
        .filter(DiagnosisReport.id == diagnosis_id, ScanJob.user_id == user_id)
        .first()
    )


def latest_diagnosis_for_result(db: Session, user_id: str, scan_result_id: str) -> DiagnosisReport | None:
    return (
        db.query(DiagnosisReport)
        .join(ScanResult, ScanResult.id == DiagnosisReport.scan_result_id)
        .join(ScanJob, ScanJob.id == ScanResult.job_id)
        .filter(DiagnosisReport.scan_result_id == scan_result_id, ScanJob.user_id == user_id)
        .order_by(DiagnosisReport.created_at.desc(), DiagnosisReport.id.desc())
        .first()
    )


def get_owned_simulation(db: Session, user_id: str, simulation_id: str) -> SimulationResult | None:
    return (
        db.query(SimulationResult)
        .join(DiagnosisReport, DiagnosisReport.id == SimulationResult.diagnosis_id)
        .join(ScanResult, ScanResult.id == DiagnosisReport.scan_result_id)
        .join(ScanJob, ScanJob.id == ScanResult.job_id)
        .filter(SimulationResult.id == simulation_id, ScanJob.user_id == user_id)
        .first()
    )


def latest_simulation_for_diagnosis(db: Session, user_id: str, diagnosis_id: str) -> SimulationResult | None:
    return (
        db.query(SimulationResult)
        .join(DiagnosisReport, DiagnosisReport.id == SimulationResult.diagnosis_id)
        .join(ScanResult, ScanResult.id == DiagnosisReport.scan_result_id)
        .join(ScanJob, ScanJob.id == ScanResult.job_id)
        .filter(SimulationResult.diagnosis_id == diagnosis_id, ScanJob.user_id == user_id)
        .order_by(SimulationResult.created_at.desc(), SimulationResult.id.desc())
        .first()
    )


def update_report_content(db: Session, user_id: str, job_id: str, content: str) -> int | None:
    """Store the user-edited report body on every result of ``job_id``.

    Returns the number of rows touched, or None when the job is not the caller's.
    """
    job = get_owned_job(db, user_id, job_id)
    if job is None:
        return None
    results = db.query(ScanResult).filter(ScanResult.job_id == job.id).all()
    for result in results:
        result.diag_attribution_report = content
    db.commit()
    return len(results)


_SERIALIZERS: dict[str, Callable[[Any], dict[str, Any]]] = {
    "scan": scan_job_to_dict,
    "diagnosis": row_to_dict,
    "simulation": row_to_dict,
}

_OWNED_LOOKUPS: dict[str, Callable[[Session, str, str], Any]] = {
    "scan": get_owned_job,
    "diagnosis": get_owned_diagnosis,
    "simulation": get_owned_simulation,
}


def make_row_fetcher(
    session_factory: sessionmaker,
    kind: str,
    user_id: str,
) -> Callable[[str], dict[str, Any] | None]:
    lookup = _OWNED_LOOKUPS[kind]
    serialize = _SERIALIZERS[kind]

    def fetch(record_id: str) -> dict[str, Any] | None:
        db = session_factory()
        try:
            obj = lookup(db, user_id, record_id)
            return serialize(obj) if obj is not None else None
        finally:
            db.close()

    return fetch
