from typing import Optional


class SheetbotError(Exception):
    """Base error for sheetbot services."""


class ConfigurationError(SheetbotError):
    """Asset descriptor is missing or still holds a placeholder id."""

    def __init__(self, asset_key: str, reason: str):
        self.asset_key = asset_key
        self.reason = reason
        super().__init__(f"Asset '{asset_key}' is misconfigured: {reason}")


class TransientDeliveryError(SheetbotError):
    """Transport could not deliver a message right now."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ServiceError(SheetbotError):
    """External service (AI, conversation log, content source) failed."""

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service}: {message}")
