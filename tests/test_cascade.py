"""Tests for the fallback cascade dispatcher."""

import pytest

from cascade import CascadeDispatcher
from clock import FixedClock
from models import EscalationNotification, NotificationMethod, Supervisor

from factories import NOW, EVENT_ID, build_tiers


def make_notification(*supervisor_ids) -> EscalationNotification:
    return EscalationNotification(
        incident_id="inc-1",
        event_id=EVENT_ID,
        escalation_level=1,
        incident_type="medical",
        priority="high",
        description="Casualty reported at gate 3",
        supervisors=[
            Supervisor(id=sid, name=f"Staff {sid}", role="supervisor")
            for sid in supervisor_ids
        ],
        escalation_time=NOW,
    )


def dispatcher_for(tiers, timeout_seconds=0.5) -> CascadeDispatcher:
    return CascadeDispatcher(tiers, FixedClock(NOW), timeout_seconds=timeout_seconds)


def methods(result):
    return [a.method for a in result.attempts]


class TestCascadeOrder:

    @pytest.mark.asyncio
    async def test_first_tier_success_stops_cascade(self):
        tiers = build_tiers({NotificationMethod.PUSH})

        result = await dispatcher_for(tiers).dispatch(make_notification("s1"))

        assert result.any_success is True
        assert result.critical_failure is False
        assert result.fallback_activated is False
        assert methods(result) == ["push"]
        assert all(not t.calls for t in tiers[1:])

    @pytest.mark.asyncio
    async def test_second_tier_success(self):
        """Push fails, the persisted record succeeds, nothing later is tried."""
        tiers = build_tiers({NotificationMethod.PERSISTED_RECORD})

        result = await dispatcher_for(tiers).dispatch(make_notification("s1"))

        assert methods(result) == ["push", "persisted_record"]
        assert [a.success for a in result.attempts] == [False, True]
        assert result.any_success is True
        assert result.fallback_activated is True
        assert not tiers[2].calls

    @pytest.mark.asyncio
    async def test_all_tiers_fail_is_critical(self):
        tiers = build_tiers()

        result = await dispatcher_for(tiers).dispatch(make_notification("s1"))

        assert len(result.attempts) == 7
        assert methods(result) == [m.value for m in NotificationMethod]
        assert result.any_success is False
        assert result.tiers_attempted == 7
        assert result.critical_failure is True

    @pytest.mark.asyncio
    async def test_fewer_than_five_failed_tiers_is_not_critical(self):
        tiers = build_tiers()[:4]

        result = await dispatcher_for(tiers).dispatch(make_notification("s1"))

        assert result.any_success is False
        assert result.tiers_attempted == 4
        assert result.critical_failure is False

    @pytest.mark.asyncio
    async def test_late_tier_success_is_not_critical(self):
        tiers = build_tiers({NotificationMethod.EMERGENCY_BROADCAST})

        result = await dispatcher_for(tiers).dispatch(make_notification("s1"))

        assert result.any_success is True
        assert result.critical_failure is False
        assert result.attempts[-1].method == "emergency_broadcast"


class TestFanOut:

    @pytest.mark.asyncio
    async def test_push_is_sent_to_every_supervisor(self):
        tiers = build_tiers({NotificationMethod.PUSH})

        result = await dispatcher_for(tiers).dispatch(make_notification("s1", "s2", "s3"))

        assert sorted(tiers[0].calls) == [["s1"], ["s2"], ["s3"]]
        assert sorted(a.recipient for a in result.attempts) == ["s1", "s2", "s3"]

    @pytest.mark.asyncio
    async def test_one_delivered_push_is_enough(self):
        tiers = build_tiers(push={"result": lambda recipients: recipients[0].id == "s2"})

        result = await dispatcher_for(tiers).dispatch(make_notification("s1", "s2"))

        assert result.any_success is True
        assert methods(result) == ["push", "push"]
        assert not tiers[1].calls

    @pytest.mark.asyncio
    async def test_grouped_tier_gets_one_call(self):
        tiers = build_tiers({NotificationMethod.PERSISTED_RECORD})

        await dispatcher_for(tiers).dispatch(make_notification("s1", "s2"))

        assert tiers[1].calls == [["s1", "s2"]]


class TestChannelFailures:

    @pytest.mark.asyncio
    async def test_hung_channel_times_out(self):
        tiers = build_tiers(
            {NotificationMethod.PERSISTED_RECORD},
            push={"delay": 1.0, "result": True},
        )

        result = await dispatcher_for(tiers, timeout_seconds=0.05).dispatch(make_notification("s1"))

        push = result.attempts[0]
        assert push.success is False
        assert "timed out" in push.error
        assert result.any_success is True

    @pytest.mark.asyncio
    async def test_raising_channel_is_a_failed_attempt(self):
        tiers = build_tiers(
            {NotificationMethod.PERSISTED_RECORD},
            push={"error": ConnectionError("gateway down")},
        )

        result = await dispatcher_for(tiers).dispatch(make_notification("s1"))

        assert result.attempts[0].success is False
        assert result.attempts[0].error == "gateway down"
        assert result.attempts[1].success is True

    @pytest.mark.asyncio
    async def test_tier_without_eligible_recipients_is_skipped(self):
        """Nobody reachable by email: recorded as a failed skipped attempt."""
        tiers = build_tiers({NotificationMethod.SMS}, email={"eligible": []})

        result = await dispatcher_for(tiers).dispatch(make_notification("s1"))

        email = result.attempts[2]
        assert email.method == "email"
        assert email.skipped is True
        assert email.success is False
        assert email.error == "no eligible recipients"
        assert tiers[2].calls == []
        assert result.attempts[3].method == "sms"

    @pytest.mark.asyncio
    async def test_skipped_tiers_count_towards_critical(self):
        tiers = build_tiers(
            email={"eligible": []},
            sms={"eligible": []},
        )

        result = await dispatcher_for(tiers).dispatch(make_notification("s1"))

        assert result.tiers_attempted == 7
        assert result.critical_failure is True

    @pytest.mark.asyncio
    async def test_recipientless_tiers_run_without_recipients(self):
        tiers = build_tiers({NotificationMethod.AUDIO_ALERT})

        result = await dispatcher_for(tiers).dispatch(make_notification())

        assert result.any_success is True
        assert [a.skipped for a in result.attempts] == [True, True, True, True, False]
        assert tiers[4].calls == [[]]
