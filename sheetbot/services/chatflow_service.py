import mimetypes
import re
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from sheetbot.logging_config import get_logger
from sheetbot.services.errors import TransientDeliveryError

logger = get_logger("chatflow_service")

WHATSAPP_JID_SUFFIX = "@s.whatsapp.net"


def to_whatsapp_jid(number: str) -> str:
    """Normalize a bare phone number to a WhatsApp JID; JIDs pass through."""
    value = (number or "").strip()
    if "@" in value:
        return value
    digits = re.sub(r"\D", "", value)
    return f"{digits}{WHATSAPP_JID_SUFFIX}" if digits else value


def media_kind(url: str, mimetype: Optional[str] = None) -> str:
    """Map a media URL to a ChatFlow media kind: image, video, audio or document."""
    guessed = mimetype or mimetypes.guess_type(url.split("?", 1)[0])[0] or ""
    if guessed.startswith("image/"):
        return "image"
    if guessed.startswith("video/"):
        return "video"
    if guessed.startswith("audio/"):
        return "audio"
    return "document"


_MEDIA_ENDPOINTS = {
    "image": ("send-image", "imageurl", True),
    "video": ("send-video", "videourl", True),
    "audio": ("send-audio", "audiourl", False),
    "document": ("send-doc", "docurl", True),
}


class Transport(ABC):
    @abstractmethod
    async def send_text(self, user_id: str, text: str, media: Optional[str] = None) -> None:
        pass

    @abstractmethod
    async def send_file(
        self,
        user_id: str,
        url: str,
        filename: str,
        caption: str,
        mimetype: Optional[str] = None,
    ) -> None:
        pass


class ChatFlowTransport(Transport):
    """Sends WhatsApp messages through the ChatFlow HTTP API."""

    def __init__(
        self,
        token: Optional[str],
        instance_id: Optional[str],
        base_url: str = "https://app.chatflow.kz/api/v1",
        timeout_seconds: float = 30.0,
    ):
        self.token = token
        self.instance_id = instance_id
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    async def _call(self, endpoint: str, params: dict, jid: str) -> dict:
        if not self.token or not self.instance_id:
            logger.error("ChatFlow credentials missing (CHATFLOW_TOKEN / CHATFLOW_INSTANCE_ID)")
            raise TransientDeliveryError("ChatFlow credentials are not configured")

        url = f"{self.base_url}/{endpoint}"
        query = {"token": self.token, "instance_id": self.instance_id, "jid": jid, **params}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.get(url, params=query)
        except Exception as e:
            logger.error(f"ChatFlow {endpoint} request failed: jid={jid}, error={e}")
            raise TransientDeliveryError(f"ChatFlow {endpoint} request failed: {e}") from e

        logger.info(f"ChatFlow {endpoint}: status={response.status_code}, jid={jid}, body={response.text[:200]}")
        if response.status_code != 200:
            raise TransientDeliveryError(
                f"ChatFlow {endpoint} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if isinstance(payload, dict) and payload.get("success") is False:
            raise TransientDeliveryError(f"ChatFlow {endpoint} rejected the message", status_code=200)
        return payload if isinstance(payload, dict) else {}

    async def _send_media(
        self,
        jid: str,
        url: str,
        caption: Optional[str],
        mimetype: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> None:
        endpoint, url_param, allow_caption = _MEDIA_ENDPOINTS[media_kind(url, mimetype)]
        params = {url_param: url}
        if allow_caption:
            # ChatFlow rejects image/doc/video requests without a non-empty caption.
            params["caption"] = caption.strip() if caption and caption.strip() else " "
        if filename and endpoint == "send-doc":
            params["filename"] = filename
        await self._call(endpoint, params, jid)

    async def send_text(self, user_id: str, text: str, media: Optional[str] = None) -> None:
        jid = to_whatsapp_jid(user_id)
        if media:
            kind = media_kind(media)
            await self._send_media(jid, media, text)
            if not _MEDIA_ENDPOINTS[kind][2] and text:
                # Audio cannot carry a caption.
                await self._call("send-text", {"msg": text}, jid)
            return
        if not text:
            return
        await self._call("send-text", {"msg": text}, jid)

    async def send_file(
        self,
        user_id: str,
        url: str,
        filename: str,
        caption: str,
        mimetype: Optional[str] = None,
    ) -> None:
        await self._send_media(to_whatsapp_jid(user_id), url, caption, mimetype=mimetype, filename=filename)
