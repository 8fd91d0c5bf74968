from datetime import datetime

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str = "running"
    service: str
    environment: str
    timestamp: datetime
    webhook_secret_configured: bool
    zoom_credentials_configured: bool
    openai_configured: bool
