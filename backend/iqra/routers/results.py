from __future__ import annotations
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException

from ..services import Services, get_services


router = APIRouter(prefix="/results", tags=["results"])


@router.get("")
async def list_results(services: Services = Depends(get_services)) -> List[Dict[str, Any]]:
    return [r.model_dump(by_alias=True, mode="json") for r in services.history.history]


@router.delete("/{result_id}")
async def delete_result(result_id: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    if not await services.history.delete(result_id):
        raise HTTPException(status_code=404, detail="Result not found")
    return {"deleted": result_id}


@router.delete("")
async def clear_results(services: Services = Depends(get_services)) -> Dict[str, Any]:
    await services.history.clear()
    return {"cleared": True}
