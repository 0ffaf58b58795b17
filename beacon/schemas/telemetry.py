from pydantic import BaseModel


class TelemetryAccepted(BaseModel):
    success: bool = True
    message: str = "Telemetry data received and stored in database"
    device_id: str
    timestamp: str
    received_data_size: int
    received_keys: list[str]
    new_device: bool = False


class MonitorRunResponse(BaseModel):
    device_offline: int
    low_battery: int
    security_issue: int
