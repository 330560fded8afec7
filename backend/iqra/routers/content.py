from __future__ import annotations
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..schemas import AppSettings
from ..services import Services, get_services


router = APIRouter(prefix="/content", tags=["content"])


class NewsRequest(BaseModel):
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    image_url: Optional[str] = None


@router.get("/settings")
async def get_settings(services: Services = Depends(get_services)) -> Dict[str, Any]:
    return services.content.settings.model_dump(by_alias=True)


@router.put("/settings")
async def save_settings(req: AppSettings, services: Services = Depends(get_services)) -> Dict[str, Any]:
    saved = await services.content.save_settings(req)
    return saved.model_dump(by_alias=True)


@router.get("/news")
async def list_news(services: Services = Depends(get_services)) -> List[Dict[str, Any]]:
    return [n.model_dump(by_alias=True) for n in services.content.news]


@router.post("/news")
async def add_news(req: NewsRequest, services: Services = Depends(get_services)) -> Dict[str, Any]:
    item = await services.content.add_news(req.title, req.content, req.image_url)
    return item.model_dump(by_alias=True)


@router.delete("/news/{news_id}")
async def delete_news(news_id: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    if not await services.content.delete_news(news_id):
        raise HTTPException(status_code=404, detail="News item not found")
    return {"deleted": news_id}
