import asyncio

from chime.core.identity import SessionIdentity
from chime.core.overlay import ReminderOverlay
from chime.datamodel import Attachment, GateState, Notice
from chime.events import E
from chime.utils import to_epoch_ms
from chime.world.schedule import LoopState

from fakes import FakeAlert, FakeClock, FakeSink, FakeSource, make_reminder


def build(identity="pm-1", reminders=None, tick_interval=3600.0, alert=None, clock=None):
    source = FakeSource(reminders if reminders is not None else [make_reminder("r1")])
    sink = FakeSink()
    overlay = ReminderOverlay(
        SessionIdentity(identity),
        source,
        sink,
        alert=alert,
        tick_interval=tick_interval,
        clock=clock or FakeClock(),
    )
    return overlay, source, sink


def test_start_without_identity_waits_for_sign_in():
    async def scenario():
        overlay, source, _ = build(identity=None)
        await overlay.start()
        assert source.calls == 0
        assert overlay.loop.state is LoopState.IDLE

        overlay.identity.sign_in("pm-1")
        await overlay.wait_ready()
        assert [r.id for r in overlay.reconciler.known] == ["r1"]
        assert overlay.loop.is_running

        await overlay.stop()

    asyncio.run(scenario())


def test_sign_out_stops_evaluation_and_clears_session_state():
    async def scenario():
        overlay, source, _ = build(tick_interval=0.01)
        await overlay.start()
        await asyncio.sleep(0.05)

        assert overlay.loop.tick_count > 0
        assert overlay.gate.held_id == "r1"
        assert len(overlay.ledger) == 1

        overlay.identity.sign_out()
        assert overlay.loop.state is LoopState.IDLE
        assert overlay.reconciler.known == []
        assert len(overlay.ledger) == 0
        assert overlay.gate.state is GateState.EMPTY
        assert source.callbacks == []

        ticks = overlay.loop.tick_count
        await asyncio.sleep(0.05)
        assert overlay.loop.tick_count == ticks

        await overlay.stop()

    asyncio.run(scenario())


def test_switching_identity_resynchronises_for_new_user():
    async def scenario():
        overlay, source, _ = build(reminders=[
            make_reminder("a", recipients=["pm-1"]),
            make_reminder("b", recipients=["pm-2"]),
        ])
        await overlay.start()
        assert [r.id for r in overlay.reconciler.known] == ["a"]

        overlay.identity.sign_in("pm-2")
        await overlay.wait_ready()
        assert [r.id for r in overlay.reconciler.known] == ["b"]
        assert overlay.loop.recipient_id == "pm-2"
        assert len(source.callbacks) == 1

        await overlay.stop()

    asyncio.run(scenario())


def test_stop_unsubscribes_every_channel():
    async def scenario():
        alert = FakeAlert()
        overlay, source, _ = build(alert=alert)
        await overlay.start()
        assert overlay.identity.bus.listener_count(E.IDENTITY_CHANGED) == 1
        assert overlay.gate.bus.listener_count(E.REMINDER_SHOWN) == 1

        await overlay.stop()
        assert overlay.identity.bus.listener_count(E.IDENTITY_CHANGED) == 0
        assert overlay.gate.bus.listener_count(E.REMINDER_SHOWN) == 0
        assert source.callbacks == []
        assert overlay.loop.state is LoopState.IDLE

        # 卸载后身份变化不再影响浮层
        overlay.identity.sign_out()
        assert source.calls == 1

    asyncio.run(scenario())


def test_shown_reminder_plays_alert_and_response_round_trip():
    async def scenario():
        alert = FakeAlert()
        overlay, _, sink = build(alert=alert)
        await overlay.start()
        assert alert.notify == overlay.push_notice

        overlay.loop.tick()
        await asyncio.sleep(0)
        assert alert.shown == ["r1"]

        assert overlay.respond()
        result = await overlay.submit("r1", "done", [Attachment("photo.png", b"png")])
        assert result.response_id == 1
        assert overlay.gate.state is GateState.EMPTY
        assert sink.responses[0].responder_id == "pm-1"
        assert overlay.notices[-1].title == "Response Sent"

        overlay.unlock_audio()
        assert alert.unlocked == 1

        status = overlay.get_status()
        assert status["identity"] == "pm-1"
        assert status["gate"]["state"] == "empty"
        assert status["sync"]["known"] == 1

        await overlay.stop()

    asyncio.run(scenario())


def test_notice_subscribers():
    async def scenario():
        overlay, _, _ = build()
        seen = []
        unsubscribe = overlay.subscribe_notices(lambda n: seen.append(n.title))
        overlay.push_notice(Notice("info", "Hello", "world"))
        unsubscribe()
        overlay.push_notice(Notice("info", "Ignored", "world"))
        assert seen == ["Hello"]
        assert [n.title for n in overlay.notices] == ["Hello", "Ignored"]

    asyncio.run(scenario())


def test_loop_keeps_evaluating_while_submission_is_in_flight():
    async def scenario():
        clock = FakeClock()
        overlay, _, sink = build(
            reminders=[
                make_reminder("slow", recurrence_data={"intervalSeconds": 30}),
                make_reminder("fast", recurrence_data={"intervalSeconds": 1}),
            ],
            tick_interval=0.01,
            clock=clock,
        )
        await overlay.start()
        await asyncio.sleep(0.05)

        assert overlay.gate.held_id == "slow"
        assert overlay.respond()

        sink.insert_gate = asyncio.Event()
        submission = asyncio.get_running_loop().create_task(overlay.submit("slow", "on it"))
        await asyncio.sleep(0)
        assert overlay.responses.is_submitting

        ticks = overlay.loop.tick_count
        clock.advance(5)
        await asyncio.sleep(0.05)

        assert overlay.loop.tick_count > ticks
        assert overlay.ledger.last_fired("fast") == to_epoch_ms(clock.now)
        assert overlay.gate.state is GateState.RESPONDING
        assert overlay.gate.held_id == "slow"

        sink.insert_gate.set()
        await submission
        assert overlay.gate.state is GateState.EMPTY

        await overlay.stop()

    asyncio.run(scenario())
