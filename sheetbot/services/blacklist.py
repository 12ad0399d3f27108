from typing import List, Set

from sheetbot.logging_config import get_logger
from sheetbot.services.chatflow_service import to_whatsapp_jid

logger = get_logger("blacklist")


class Blacklist:
    """Users the bot ignores entirely. Held in memory only."""

    def __init__(self) -> None:
        self._users: Set[str] = set()

    def add(self, number: str) -> str:
        jid = to_whatsapp_jid(number)
        self._users.add(jid)
        logger.info(f"Blacklisted {jid}")
        return jid

    def remove(self, number: str) -> str:
        jid = to_whatsapp_jid(number)
        self._users.discard(jid)
        logger.info(f"Removed {jid} from blacklist")
        return jid

    def contains(self, user_id: str) -> bool:
        return to_whatsapp_jid(user_id) in self._users

    def list(self) -> List[str]:
        return sorted(self._users)
