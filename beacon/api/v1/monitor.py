from fastapi import APIRouter, Depends

from beacon.core.security import get_current_admin
from beacon.schemas.telemetry import MonitorRunResponse
from beacon.services.device_monitor import run_device_monitoring

router = APIRouter(prefix="/monitor", tags=["monitor"], dependencies=[Depends(get_current_admin)])


@router.post("/run", response_model=MonitorRunResponse)
async def run_monitor():
    return MonitorRunResponse(**await run_device_monitoring())
