from datetime import UTC, datetime

from app.core.config import Settings
from app.schemas.health import HealthResponse

RUNNING_MESSAGE = "Zoom webhook backend is running."


class HealthService:
    """Reports liveness plus which integrations have credentials configured."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def get_status(self) -> HealthResponse:
        return HealthResponse(
            service=self.settings.app_name,
            environment=self.settings.app_env,
            timestamp=datetime.now(UTC),
            webhook_secret_configured=bool(self.settings.zoom_webhook_secret_token),
            zoom_credentials_configured=self.settings.zoom_credentials_configured,
            openai_configured=self.settings.openai_configured,
        )
