from __future__ import annotations
from typing import Any, Dict, Union

from fastapi import APIRouter, Depends, Body

from ..services import Services, get_services


router = APIRouter(prefix="/sync", tags=["sync"])


@router.get("")
async def sync_state(services: Services = Depends(get_services)) -> Dict[str, Any]:
    return services.sync.state.model_dump(mode="json")


@router.post("/connect")
async def connect(config: Union[Dict[str, Any], str] = Body(...), services: Services = Depends(get_services)) -> Dict[str, Any]:
    # Config may arrive as an object or as the pasted JSON text
    await services.sync.connect(config)
    return services.sync.state.model_dump(mode="json")


@router.post("/disconnect")
async def disconnect(services: Services = Depends(get_services)) -> Dict[str, Any]:
    await services.sync.disconnect()
    return services.sync.state.model_dump(mode="json")
