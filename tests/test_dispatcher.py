import asyncio

from sheetbot.services.asset_catalog import default_catalog
from sheetbot.services.content_source import Flow
from sheetbot.services.dispatcher import (
    MSG_AI_ERROR,
    MSG_ASSET_DELIVERY_FAILED,
    MSG_ASSET_MISCONFIGURED,
    MSG_SESSION_EXPIRED,
    MSG_SESSION_RESTART,
    StepResult,
)
from sheetbot.services.errors import ServiceError
from tests.conftest import LEGAL_ID, DispatcherHarness, FakeAI, FakeConversationLog, FakeTransport

USER = "5215512345678@s.whatsapp.net"


def _send(harness, text, user=USER):
    return asyncio.run(harness.dispatcher.handle(user, text))


class TestPipelineShape:
    def test_step_order(self, harness):
        names = [name for name, _ in harness.dispatcher.steps]

        assert names == ["reset_check", "intent_capture", "asset_confirmation", "flow_match", "ai_fallback"]

    def test_free_text_reaches_ai(self, harness):
        result = _send(harness, "Hola, ¿qué servicios tienen?")

        assert result.step == "ai_fallback"
        assert result.texts == ["Respuesta de IA"]
        assert harness.ai.calls == [("hola, ¿qué servicios tienen", USER)]

    def test_liveness_check_scheduled_after_every_message(self, harness):
        _send(harness, "hola")
        harness.clock.advance(10)
        _send(harness, "otra cosa")

        assert len(harness.scheduler.calls) == 2
        assert all(delay == 60 for delay, _, _ in harness.scheduler.calls)


class TestSessionReset:
    def test_expired_session_sends_reset_prompts_only(self, harness):
        _send(harness, "quiero el brochure legal")
        harness.clock.advance(301)
        harness.ai.calls.clear()
        harness.transport.sent.clear()

        result = _send(harness, "sí")

        assert result.step == "reset_check"
        assert harness.transport.texts() == [MSG_SESSION_EXPIRED, MSG_SESSION_RESTART]
        assert harness.ai.calls == []
        assert harness.transport.files() == []
        assert harness.sessions.get(USER).pending_asset_key is None
        assert harness.log.cleared == [USER]

    def test_gap_of_exactly_timeout_does_not_reset(self, harness):
        _send(harness, "hola")
        harness.clock.advance(300)

        assert _send(harness, "hola de nuevo").step == "ai_fallback"

    def test_message_after_reset_is_processed_normally(self, harness):
        _send(harness, "hola")
        harness.clock.advance(400)
        _send(harness, "hola")
        harness.clock.advance(5)

        assert _send(harness, "qué tal").step == "ai_fallback"

    def test_reset_tolerates_log_failure(self):
        harness = DispatcherHarness(log=FakeConversationLog(fail=True))
        _send(harness, "hola")
        harness.clock.advance(301)

        result = _send(harness, "hola")

        assert result.step == "reset_check"
        assert result.texts == [MSG_SESSION_EXPIRED, MSG_SESSION_RESTART]


class TestAssetDelivery:
    def test_request_then_confirmation_delivers_once(self, harness):
        first = _send(harness, "Quiero el brochure legal")
        assert first.step == "ai_fallback"
        assert harness.transport.sent == []
        assert harness.ai.calls == []
        assert harness.sessions.get(USER).pending_asset_key == "legal"

        harness.clock.advance(5)
        harness.transport.sent.clear()
        second = _send(harness, "¡Sí!")

        assert second.step == "asset_confirmation"
        assert [item[0] for item in harness.transport.sent] == ["text", "file"]
        assert harness.transport.texts() == ["Brochure legal"]
        files = harness.transport.files()
        assert len(files) == 1
        assert files[0][2].endswith(LEGAL_ID)
        assert files[0][3] == "legal.pdf"
        assert harness.sessions.get(USER).pending_asset_key is None

        harness.clock.advance(5)
        third = _send(harness, "sí")

        assert third.step == "ai_fallback"
        assert len(harness.transport.files()) == 1

    def test_affirmative_without_pending_goes_to_ai(self, harness):
        result = _send(harness, "claro")

        assert result.step == "ai_fallback"
        assert harness.transport.files() == []

    def test_latest_request_replaces_pending(self, harness):
        _send(harness, "brochure legal")
        _send(harness, "mejor el brochure contable")
        harness.transport.sent.clear()

        _send(harness, "sí")

        assert harness.transport.files()[0][3] == "contable.pdf"

    def test_placeholder_id_sends_configuration_notice(self, harness):
        _send(harness, "brochure branding")
        harness.transport.sent.clear()

        result = _send(harness, "sí")

        assert result.step == "asset_confirmation"
        assert harness.transport.texts() == [MSG_ASSET_MISCONFIGURED]
        assert harness.transport.files() == []
        assert harness.sessions.get(USER).pending_asset_key == "branding"

    def test_default_catalog_placeholder_is_not_delivered(self, harness):
        harness.dispatcher.catalog = default_catalog()
        _send(harness, "brochure branding")
        harness.transport.sent.clear()

        result = _send(harness, "sí")

        assert result.step == "asset_confirmation"
        assert harness.transport.texts() == [MSG_ASSET_MISCONFIGURED]
        assert harness.transport.files() == []

    def test_file_failure_sends_notice_and_clears_pending(self):
        harness = DispatcherHarness(transport=FakeTransport(fail_files=True))
        _send(harness, "brochure legal")
        harness.transport.sent.clear()

        result = _send(harness, "si")

        assert result.step == "asset_confirmation"
        assert harness.transport.texts() == ["Brochure legal", MSG_ASSET_DELIVERY_FAILED]
        assert [action.delivered for action in result.files] == [False]
        assert harness.sessions.get(USER).pending_asset_key is None

    def test_pending_is_per_user(self, harness):
        other = "5215599999999@s.whatsapp.net"
        _send(harness, "brochure legal")

        result = _send(harness, "sí", user=other)

        assert result.step == "ai_fallback"
        assert harness.sessions.get(USER).pending_asset_key == "legal"

    def test_request_also_matching_flow_still_records_pending(self):
        harness = DispatcherHarness(flows=[Flow(keyword="brochure", answer="Te envío info")])

        result = _send(harness, "brochure legal")

        assert result.step == "flow_match"
        assert result.texts == ["Te envío info"]
        assert harness.sessions.get(USER).pending_asset_key == "legal"


class TestFlowMatch:
    def test_keyword_flow_answer_with_media(self):
        flows = [Flow(keyword="precios", answer="Lista de precios", media="https://example.com/precios.pdf")]
        harness = DispatcherHarness(flows=flows)

        result = _send(harness, "¿Cuáles son sus PRECIOS?")

        assert result.step == "flow_match"
        assert harness.transport.sent == [("text", USER, "Lista de precios", "https://example.com/precios.pdf")]
        assert harness.ai.calls == []
        assert harness.log.entries[USER] == [
            {"role": "user", "content": "¿Cuáles son sus PRECIOS?"},
            {"role": "assistant", "content": "Lista de precios"},
        ]

    def test_keyword_with_punctuation_matches(self):
        harness = DispatcherHarness(flows=[Flow(keyword="¿Precios?", answer="Lista de precios")])

        result = _send(harness, "precios por favor")

        assert result.step == "flow_match"
        assert result.texts == ["Lista de precios"]

    def test_content_source_failure_falls_through_to_ai(self):
        harness = DispatcherHarness(flows=[Flow(keyword="precios", answer="x")], content_fail=True)

        result = _send(harness, "precios")

        assert result.step == "ai_fallback"
        assert result.texts == ["Respuesta de IA"]

    def test_transport_failure_is_reported_not_raised(self):
        harness = DispatcherHarness(
            flows=[Flow(keyword="precios", answer="Lista")],
            transport=FakeTransport(fail_texts=True),
        )

        result = _send(harness, "precios")

        assert result.step == "flow_match"
        assert result.texts == []
        assert result.actions[0].delivered is False


class TestAIFallback:
    def test_ai_error_sends_fallback_notice(self):
        harness = DispatcherHarness(ai=FakeAI(error=ServiceError("ai", "timeout")))

        result = _send(harness, "hola")

        assert result.step == "ai_fallback"
        assert result.texts == [MSG_AI_ERROR]

    def test_unexpected_step_error_stops_pipeline(self):
        harness = DispatcherHarness(ai=FakeAI(error=RuntimeError("bug")))

        result = _send(harness, "hola")

        assert result.step == "ai_fallback"
        assert harness.transport.sent == []


class TestInactiveUsers:
    def test_timer_fired_during_flow_lookup_suppresses_flow(self):
        harness = DispatcherHarness(flows=[Flow(keyword="precios", answer="Lista")])
        real_list_flows = harness.content.list_flows

        async def slow_list_flows():
            harness.tracker.mark_inactive(USER)
            return await real_list_flows()

        harness.content.list_flows = slow_list_flows

        result = _send(harness, "precios")

        assert result.step == "flow_match"
        assert harness.transport.sent == []
        assert USER not in harness.log.entries

    def test_user_inactive_during_ai_call_gets_nothing(self):
        harness = DispatcherHarness()
        harness.ai.on_call = harness.tracker.mark_inactive

        result = _send(harness, "hola")

        assert result.step == "ai_fallback"
        assert harness.transport.sent == []

    def test_inactive_user_with_pending_brochure_gets_nothing(self):
        harness = DispatcherHarness()
        _send(harness, "brochure legal")
        harness.transport.sent.clear()
        harness.tracker.touch = _touch_then_deactivate(harness)

        result = _send(harness, "sí")

        assert result.step == "asset_confirmation"
        assert harness.transport.sent == []

    def test_liveness_timer_marks_user_inactive(self, harness):
        _send(harness, "hola")

        harness.scheduler.fire_all()

        assert harness.tracker.is_active(USER) is False

    def test_new_message_reactivates_user(self, harness):
        _send(harness, "hola")
        harness.scheduler.fire_all()
        harness.clock.advance(70)

        result = _send(harness, "sigo aquí")

        assert result.step == "ai_fallback"
        assert result.texts == ["Respuesta de IA"]


def _touch_then_deactivate(harness):
    tracker = harness.tracker
    real_touch = type(tracker).touch

    def touch(user_id, now):
        result = real_touch(tracker, user_id, now)
        tracker.mark_inactive(user_id)
        return result

    return touch


class TestStepResult:
    def test_values(self):
        assert StepResult.HANDLED.value == "handled"
        assert StepResult.PASS.value == "pass"


class TestPerUserLocks:
    def test_lock_dropped_after_message(self, harness):
        _send(harness, "hola")
        _send(harness, "hola", user="5215599999999@s.whatsapp.net")

        assert harness.dispatcher._locks == {}
        assert harness.dispatcher._holders == {}

    def test_queued_message_counts_as_reply_for_earlier_check(self):
        harness = DispatcherHarness()

        async def scenario():
            started = asyncio.Event()
            release = asyncio.Event()

            async def slow_complete(text, user_id):
                started.set()
                await release.wait()
                return f"Respuesta a {text}"

            harness.ai.complete = slow_complete
            first = asyncio.create_task(harness.dispatcher.handle(USER, "hola"))
            await started.wait()

            harness.clock.advance(30)
            second = asyncio.create_task(harness.dispatcher.handle(USER, "sigo aquí"))
            await asyncio.sleep(0)
            queued_locks = len(harness.dispatcher._locks)

            # The first message's check fires while the second one waits.
            _delay, callback, args = harness.scheduler.calls[0]
            callback(*args)
            release.set()
            return queued_locks, await first, await second

        queued_locks, first, second = asyncio.run(scenario())

        assert queued_locks == 1
        assert len(harness.scheduler.calls) == 2
        assert harness.tracker.is_active(USER) is True
        assert first.texts == ["Respuesta a hola"]
        assert second.texts == ["Respuesta a sigo aquí"]
        assert harness.dispatcher._locks == {}
