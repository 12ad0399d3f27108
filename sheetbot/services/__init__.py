from sheetbot.services.activity_tracker import ActivityRecord, ActivityTracker, TouchResult
from sheetbot.services.asset_catalog import AssetCatalog, AssetCheck, AssetDescriptor
from sheetbot.services.dispatcher import DispatchResult, MessageDispatcher, StepResult
from sheetbot.services.errors import (
    ConfigurationError,
    ServiceError,
    SheetbotError,
    TransientDeliveryError,
)
from sheetbot.services.session_store import SessionContext, SessionStore
