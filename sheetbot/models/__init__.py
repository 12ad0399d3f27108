from sheetbot.models.broadcast_delivery import BroadcastDelivery
from sheetbot.models.chat_message import ChatMessage

__all__ = ["ChatMessage", "BroadcastDelivery"]
