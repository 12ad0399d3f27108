"""Inbound message dispatch.

Each inbound message runs through an ordered list of named steps:

1. ``reset_check``        expired session -> reset prompts, nothing else
2. ``intent_capture``     remember which brochure the user asked about
3. ``asset_confirmation`` "sí" with a pending brochure -> deliver it once
4. ``flow_match``         keyword flow from the content source
5. ``ai_fallback``        AI answer, unless the message only requested a brochure

A step returns ``StepResult.HANDLED`` to stop or ``StepResult.PASS`` to let
the next one run. Steps 3-5 never send to a user whose liveness flag is off;
they stop silently instead.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from sheetbot.logging_config import get_logger
from sheetbot.services.activity_tracker import ActivityTracker
from sheetbot.services.ai_service import AIResponder
from sheetbot.services.asset_catalog import AssetCatalog, AssetCheck
from sheetbot.services.chatflow_service import Transport
from sheetbot.services.content_source import ContentSource
from sheetbot.services.conversation_log import ConversationLog
from sheetbot.services.errors import ConfigurationError, ServiceError, TransientDeliveryError
from sheetbot.services.flow_service import match_flow
from sheetbot.services.intent_service import detect_asset_request, is_affirmative, normalize_for_matching
from sheetbot.services.session_store import SessionStore

logger = get_logger("dispatcher")

MSG_SESSION_EXPIRED = "💤 Tu sesión anterior fue cerrada por inactividad. Empecemos de nuevo."
MSG_SESSION_RESTART = "👋 ¿En qué área deseas recibir información? (Legal, Contable, Branding o Página Web)"
MSG_ASSET_MISCONFIGURED = "⚠️ Error: El brochure no está configurado correctamente. Contacta con el administrador."
MSG_ASSET_DELIVERY_FAILED = "🚫 No se pudo enviar el brochure en este momento. Inténtalo de nuevo más tarde."
MSG_AI_ERROR = "😕 Lo siento, no pude procesar tu mensaje en este momento. Inténtalo de nuevo en unos minutos."


class StepResult(str, Enum):
    HANDLED = "handled"
    PASS = "pass"


@dataclass
class OutboundAction:
    kind: str  # text, file
    text: Optional[str] = None
    media: Optional[str] = None
    filename: Optional[str] = None
    delivered: bool = True


@dataclass
class DispatchContext:
    user_id: str
    raw_text: str
    text: str
    now: float
    expired: bool = False
    asset_requested: bool = False
    actions: List[OutboundAction] = field(default_factory=list)


@dataclass
class DispatchResult:
    user_id: str
    step: Optional[str]
    actions: List[OutboundAction]

    @property
    def texts(self) -> List[str]:
        return [action.text for action in self.actions if action.kind == "text" and action.delivered]

    @property
    def files(self) -> List[OutboundAction]:
        return [action for action in self.actions if action.kind == "file"]


Step = Callable[[DispatchContext], Awaitable[StepResult]]


class MessageDispatcher:
    def __init__(
        self,
        tracker: ActivityTracker,
        sessions: SessionStore,
        catalog: AssetCatalog,
        content_source: ContentSource,
        ai: AIResponder,
        conversation_log: ConversationLog,
        transport: Transport,
        clock: Callable[[], float] = time.time,
        asset_marker: str = "brochure",
    ):
        self.tracker = tracker
        self.sessions = sessions
        self.catalog = catalog
        self.content_source = content_source
        self.ai = ai
        self.conversation_log = conversation_log
        self.transport = transport
        self.clock = clock
        self.asset_marker = asset_marker
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    @property
    def steps(self) -> List[Tuple[str, Step]]:
        return [
            ("reset_check", self.reset_check),
            ("intent_capture", self.intent_capture),
            ("asset_confirmation", self.asset_confirmation),
            ("flow_match", self.flow_match),
            ("ai_fallback", self.ai_fallback),
        ]

    def _acquire_ref(self, user_id: str) -> asyncio.Lock:
        self._holders[user_id] = self._holders.get(user_id, 0) + 1
        return self._locks.setdefault(user_id, asyncio.Lock())

    def _release_ref(self, user_id: str) -> None:
        self._holders[user_id] -= 1
        if self._holders[user_id] == 0:
            del self._holders[user_id]
            self._locks.pop(user_id, None)

    async def handle(self, user_id: str, text: str) -> DispatchResult:
        """Resolve one inbound message to its outbound actions."""
        now = self.clock()
        # Touched before queueing so a message waiting behind another one still
        # counts as a reply for pending liveness checks.
        touch = self.tracker.touch(user_id, now)
        self.tracker.schedule_liveness_check(user_id, now)

        lock = self._acquire_ref(user_id)
        try:
            async with lock:
                return await self._run_steps(
                    DispatchContext(
                        user_id=user_id,
                        raw_text=text or "",
                        text=normalize_for_matching(text or ""),
                        now=now,
                        expired=touch.expired,
                    )
                )
        finally:
            self._release_ref(user_id)

    async def _run_steps(self, ctx: DispatchContext) -> DispatchResult:
        user_id = ctx.user_id
        handled_by = None
        for name, step in self.steps:
            try:
                result = await step(ctx)
            except Exception:
                logger.exception(
                    "Dispatch step failed",
                    extra={"context": {"user_id": user_id, "step": name}},
                )
                handled_by = name
                break
            if result is StepResult.HANDLED:
                handled_by = name
                break

        logger.info(
            "Message dispatched",
            extra={"context": {"user_id": user_id, "step": handled_by, "actions": len(ctx.actions)}},
        )
        return DispatchResult(user_id=user_id, step=handled_by, actions=ctx.actions)

    async def _send(self, ctx: DispatchContext, text: str, media: Optional[str] = None) -> bool:
        try:
            await self.transport.send_text(ctx.user_id, text, media=media)
        except TransientDeliveryError as e:
            logger.error(f"Send failed for {ctx.user_id}: {e}")
            ctx.actions.append(OutboundAction(kind="text", text=text, media=media, delivered=False))
            return False
        ctx.actions.append(OutboundAction(kind="text", text=text, media=media))
        return True

    # --- steps ---

    async def reset_check(self, ctx: DispatchContext) -> StepResult:
        if not ctx.expired:
            return StepResult.PASS

        logger.info(f"Session expired for {ctx.user_id}, resetting")
        self.sessions.reset(ctx.user_id)
        try:
            await self.conversation_log.clear(ctx.user_id)
        except ServiceError as e:
            logger.warning(f"Could not clear history for {ctx.user_id}: {e}")
        await self._send(ctx, MSG_SESSION_EXPIRED)
        await self._send(ctx, MSG_SESSION_RESTART)
        return StepResult.HANDLED

    async def intent_capture(self, ctx: DispatchContext) -> StepResult:
        key = detect_asset_request(ctx.text, self.catalog.keys(), marker=self.asset_marker)
        if key:
            self.sessions.set_pending_asset(ctx.user_id, key)
            ctx.asset_requested = True
            logger.info(f"User {ctx.user_id} requested brochure '{key}'")
        return StepResult.PASS

    async def asset_confirmation(self, ctx: DispatchContext) -> StepResult:
        if not is_affirmative(ctx.text):
            return StepResult.PASS
        pending = self.sessions.get(ctx.user_id).pending_asset_key
        if not pending:
            return StepResult.PASS

        if not self.tracker.is_active(ctx.user_id):
            logger.info(f"User {ctx.user_id} inactive, brochure '{pending}' not sent")
            return StepResult.HANDLED

        descriptor = self.catalog.resolve(pending)
        check = self.catalog.validate(descriptor) if descriptor else AssetCheck(ok=False, reason="not in catalog")
        if not check.ok:
            error = ConfigurationError(pending, check.reason or "invalid")
            logger.error(str(error), extra={"context": {"user_id": ctx.user_id, "asset": pending}})
            await self._send(ctx, MSG_ASSET_MISCONFIGURED)
            return StepResult.HANDLED

        logger.info(f"Sending brochure {descriptor.filename} to {ctx.user_id} ({descriptor.download_url})")
        try:
            await self.transport.send_text(ctx.user_id, descriptor.caption)
            ctx.actions.append(OutboundAction(kind="text", text=descriptor.caption))
            await self.transport.send_file(
                ctx.user_id,
                descriptor.download_url,
                descriptor.filename,
                descriptor.caption,
                mimetype=descriptor.mimetype,
            )
            ctx.actions.append(
                OutboundAction(kind="file", text=descriptor.caption, media=descriptor.download_url, filename=descriptor.filename)
            )
            logger.info(f"Brochure {descriptor.filename} delivered to {ctx.user_id}")
        except TransientDeliveryError as e:
            logger.error(f"Brochure delivery to {ctx.user_id} failed: {e}")
            ctx.actions.append(
                OutboundAction(
                    kind="file",
                    text=descriptor.caption,
                    media=descriptor.download_url,
                    filename=descriptor.filename,
                    delivered=False,
                )
            )
            await self._send(ctx, MSG_ASSET_DELIVERY_FAILED)
        finally:
            # One attempt per confirmation, whatever its outcome.
            self.sessions.clear_pending_asset(ctx.user_id)
        return StepResult.HANDLED

    async def flow_match(self, ctx: DispatchContext) -> StepResult:
        try:
            flows = await self.content_source.list_flows()
        except ServiceError as e:
            logger.error(f"Flows unavailable: {e}")
            return StepResult.PASS

        flow = match_flow(flows, ctx.text)
        if flow is None:
            return StepResult.PASS

        if not self.tracker.is_active(ctx.user_id):
            logger.info(f"User {ctx.user_id} inactive, flow '{flow.keyword}' not sent")
            return StepResult.HANDLED

        for role, content in (("user", ctx.raw_text), ("assistant", flow.answer)):
            try:
                await self.conversation_log.append(ctx.user_id, role, content)
            except ServiceError as e:
                logger.warning(f"Could not record flow exchange for {ctx.user_id}: {e}")

        await self._send(ctx, flow.answer, media=flow.media)
        return StepResult.HANDLED

    async def ai_fallback(self, ctx: DispatchContext) -> StepResult:
        if not self.tracker.is_active(ctx.user_id):
            logger.info(f"User {ctx.user_id} inactive, AI answer not sent")
            return StepResult.HANDLED

        if ctx.asset_requested:
            # The brochure waits for a confirmation; no AI reply in between.
            return StepResult.HANDLED

        logger.info(f"No keyword matched for {ctx.user_id}, asking the AI")
        try:
            answer = await self.ai.complete(ctx.text, ctx.user_id)
        except ServiceError as e:
            logger.error(f"AI fallback failed for {ctx.user_id}: {e}")
            answer = MSG_AI_ERROR

        # The AI call can outlast the response window.
        if not self.tracker.is_active(ctx.user_id):
            logger.info(f"User {ctx.user_id} went inactive during AI call, answer dropped")
            return StepResult.HANDLED

        await self._send(ctx, answer)
        return StepResult.HANDLED
