"""Video feed routes. Only /resolve may spend provider quota."""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from videoshop.api.deps import require_admin_api_key
from videoshop.db.models import Product
from videoshop.db.session import get_db
from videoshop.worker.tasks import task_runner

router = APIRouter(prefix="/api/videos", tags=["videos"])


class VideoResponse(BaseModel):
    video_id: str
    title: str
    channel_title: Optional[str]
    thumbnail_url: Optional[str]
    embed_url: Optional[str]
    duration: Optional[str]
    view_count: int
    like_count: int
    relevance_score: float
    category: str
    product_names: list[str]
    created_at: datetime

    class Config:
        from_attributes = True


@router.get("", response_model=List[VideoResponse])
async def video_feed(
    limit: int = Query(default=10, ge=1, le=50),
    category: Optional[str] = None,
):
    """Cached feed; never calls the video provider."""
    return await task_runner.orchestrator.videos.cached_feed(limit, category)


@router.post("/resolve/{product_id}", response_model=List[VideoResponse])
async def resolve_for_product(product_id: int, db=Depends(get_db)):
    product = await db.get(Product, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return await task_runner.orchestrator.videos.resolve_videos(
        product.name, product_id=product.id, category=product.category
    )


@router.get("/quota")
async def quota_status():
    return task_runner.orchestrator.videos.quota.status()


@router.delete("/{video_id}", dependencies=[Depends(require_admin_api_key)])
async def deactivate_video(video_id: str):
    if not await task_runner.orchestrator.videos.deactivate(video_id):
        raise HTTPException(status_code=404, detail="Video not found")
    return {"success": True}
