"""Discovery pipeline routes."""

from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from videoshop.api.deps import require_admin_api_key
from videoshop.api.routes.products import ProductResponse
from videoshop.db.models import PipelineRun, Product
from videoshop.db.session import get_db
from videoshop.pipeline.catalog import AUTOMATED_SOURCE
from videoshop.worker.tasks import task_runner

router = APIRouter(prefix="/api/automation", tags=["automation"])


class RunRequest(BaseModel):
    time_window: Optional[str] = Field(default=None, pattern="^(hour|day|week|month|year|all)$")
    scan_limit: Optional[int] = Field(default=None, ge=1, le=100)
    max_products_to_match: Optional[int] = Field(default=None, ge=1, le=50)


class PipelineRunResponse(BaseModel):
    id: int
    run_id: str
    trigger: str
    status: str
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    candidates_found: int
    matches_found: int
    products_saved: int
    videos_added: int
    alerts_sent: int
    error_message: Optional[str]

    class Config:
        from_attributes = True


@router.post("/run", dependencies=[Depends(require_admin_api_key)])
async def run_pipeline(body: Optional[RunRequest] = None):
    """Run the pipeline now. 409 while another run holds the lock."""
    options = body.model_dump(exclude_none=True) if body else {}
    result = await task_runner.run_pipeline(trigger="manual", options=options)
    if result is None:
        raise HTTPException(status_code=409, detail="A pipeline run is already in progress")
    return result


@router.post("/cancel", dependencies=[Depends(require_admin_api_key)])
async def cancel_pipeline():
    task_runner.cancel_current_run()
    return {"success": True, "message": "Cancellation requested"}


@router.get("/health")
async def pipeline_health():
    return await task_runner.orchestrator.check_health()


@router.get("/stats")
async def pipeline_stats():
    return {"success": True, "stats": task_runner.orchestrator.stats}


@router.post("/stats/reset", dependencies=[Depends(require_admin_api_key)])
async def reset_stats():
    task_runner.orchestrator.reset_stats()
    return {"success": True, "stats": task_runner.orchestrator.stats}


@router.get("/products", response_model=List[ProductResponse])
async def automated_products(
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    """Products created by the pipeline, newest first."""
    result = await db.execute(
        select(Product)
        .where(Product.source == AUTOMATED_SOURCE)
        .order_by(Product.created_at.desc(), Product.id.desc())
        .limit(limit)
    )
    return result.scalars().all()


@router.get("/runs", response_model=List[PipelineRunResponse])
async def recent_runs(limit: int = Query(default=20, ge=1, le=100)):
    return await task_runner.recent_runs(limit)


@router.get("/report")
async def latest_report(db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    """Report of the most recent run that produced one."""
    result = await db.execute(
        select(PipelineRun)
        .where(PipelineRun.report.is_not(None))
        .order_by(PipelineRun.created_at.desc(), PipelineRun.id.desc())
        .limit(1)
    )
    run = result.scalar_one_or_none()
    if not run:
        raise HTTPException(status_code=404, detail="No pipeline report yet")
    return {"success": True, "run_id": run.run_id, "status": run.status, "report": run.report}


@router.delete("/reset", dependencies=[Depends(require_admin_api_key)])
async def purge_automated_products():
    """Delete every pipeline-created product."""
    removed = await task_runner.orchestrator.catalog.purge_automated()
    return {"success": True, "deleted": removed}


@router.post("/sync-prices", dependencies=[Depends(require_admin_api_key)])
async def sync_prices():
    summary = await task_runner.sync_prices()
    return {"success": True, **summary}


@router.get("/review-queue", response_model=List[ProductResponse])
async def review_queue():
    return await task_runner.orchestrator.catalog.needing_review()


@router.get("/performance")
async def performance():
    return {"success": True, **(await task_runner.orchestrator.catalog.performance_report())}
