from fastapi import APIRouter, Depends

from beacon.api.v1.deps import get_repository
from beacon.core.security import get_current_admin
from beacon.schemas.notification import (
    ChannelResultOut,
    NotificationSettings,
    NotificationSettingsUpdate,
    TestNotificationRequest,
    TestNotificationResponse,
)
from beacon.services.notification_dispatcher import notification_dispatcher
from beacon.services.settings_resolver import settings_resolver
from beacon.services.telemetry_repository import TelemetryRepository

router = APIRouter(prefix="/settings", tags=["settings"], dependencies=[Depends(get_current_admin)])


@router.get("/notifications", response_model=NotificationSettings)
async def get_notification_settings(repo: TelemetryRepository = Depends(get_repository)):
    return await settings_resolver.get_notification_settings(repo)


@router.put("/notifications", response_model=NotificationSettings)
async def update_notification_settings(
    update: NotificationSettingsUpdate,
    repo: TelemetryRepository = Depends(get_repository),
):
    return await settings_resolver.save_notification_settings(repo, update)


@router.post("/notifications/test", response_model=TestNotificationResponse)
async def send_test_notification(
    req: TestNotificationRequest | None = None,
    repo: TelemetryRepository = Depends(get_repository),
):
    req = req or TestNotificationRequest()
    delivered, results = await notification_dispatcher.send_test(repo, req.message)
    return TestNotificationResponse(
        delivered=delivered,
        results=[ChannelResultOut(channel=r.channel, success=r.success, error=r.error) for r in results],
    )
