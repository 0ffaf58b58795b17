from fastapi import APIRouter

from beacon.api.v1 import admin, auth, devices, monitor, settings, telemetry

api_router = APIRouter()
api_router.include_router(telemetry.router)
api_router.include_router(auth.router)
api_router.include_router(devices.router)
api_router.include_router(settings.router)
api_router.include_router(monitor.router)
api_router.include_router(admin.router)
