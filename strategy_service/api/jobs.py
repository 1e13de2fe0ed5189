"""CRUD API for strategy jobs."""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import ValidationError

from strategy_service.api.deps import get_job_manager, get_job_store
from strategy_service.engine.job_manager import JobManager
from strategy_service.errors import StrategyServiceError
from strategy_service.schemas.jobs import JOB_TYPES, Job, JobAdapter, JobToggle
from strategy_service.services.job_store import JobStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


def _read(job: Job, manager: JobManager) -> dict:
    worker = manager.get_worker(job.id)
    data = job.model_dump(mode="json")
    data["state"] = worker.state.value if worker else "stopped"
    return data


@router.get("")
def list_jobs(
    type: str | None = None,
    active: bool | None = None,
    store: JobStore = Depends(get_job_store),
    manager: JobManager = Depends(get_job_manager),
):
    if type is not None and type not in JOB_TYPES:
        raise HTTPException(status_code=422, detail=f"type must be one of: {', '.join(JOB_TYPES)}")
    jobs = store.load_all(job_type=type)
    if active is not None:
        jobs = [j for j in jobs if j.is_active == active]
    # Running workers hold the freshest state
    return [_read(manager.get_job(j.id) or j, manager) for j in jobs]


@router.post("", status_code=201)
async def create_job(
    payload: dict[str, Any] = Body(...),
    store: JobStore = Depends(get_job_store),
    manager: JobManager = Depends(get_job_manager),
):
    try:
        job = JobAdapter.validate_python(payload)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False, include_input=False))
    if not job.trading_wallet_secret_key:
        raise HTTPException(status_code=422, detail="trading_wallet_secret_key is required")
    if store.load(job.id) is not None:
        raise HTTPException(status_code=409, detail="Job already exists")

    store.save(job)
    try:
        await manager.add_job(job)
    except StrategyServiceError as e:
        job.is_active = False
        store.save(job)
        raise HTTPException(status_code=400, detail=f"Job {job.id}: {e}")
    return _read(job, manager)


@router.get("/{job_id}")
def get_job(
    job_id: str,
    store: JobStore = Depends(get_job_store),
    manager: JobManager = Depends(get_job_manager),
):
    job = manager.get_job(job_id) or store.load(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return _read(job, manager)


@router.post("/{job_id}/toggle")
async def toggle_job(
    job_id: str,
    body: JobToggle,
    store: JobStore = Depends(get_job_store),
    manager: JobManager = Depends(get_job_manager),
):
    try:
        if await manager.toggle_job(job_id, body.is_active):
            return _read(manager.get_job(job_id), manager)

        # Not managed (inactive at startup or completed): register it now
        job = store.load(job_id)
        if not job:
            raise HTTPException(status_code=404, detail="Job not found")
        job.is_active = body.is_active
        store.save(job)
        if body.is_active:
            await manager.add_job(job)
    except StrategyServiceError as e:
        raise HTTPException(status_code=400, detail=f"Job {job_id}: {e}")
    return _read(job, manager)


@router.delete("/{job_id}", status_code=204)
async def delete_job(
    job_id: str,
    store: JobStore = Depends(get_job_store),
    manager: JobManager = Depends(get_job_manager),
):
    removed = await manager.remove_job(job_id)
    deleted = store.delete(job_id)
    if not removed and not deleted:
        raise HTTPException(status_code=404, detail="Job not found")
