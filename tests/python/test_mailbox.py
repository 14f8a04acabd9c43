"""Tests for the signaling mailbox store."""

import asyncio
from datetime import timedelta

import pytest

from skillswap_rtc.core import (
    Forbidden,
    InvalidPayload,
    InvalidState,
    NotFound,
    RoomStatus,
    SessionDescription,
    SessionLifecycleBridge,
    SignalingMailbox,
)
from skillswap_rtc.core.models import utcnow

C1 = {'candidate': 'candidate:1 1 udp 2122260223 10.0.0.1 50000 typ host', 'sdpMid': '0', 'sdpMLineIndex': 0}
C2 = {'candidate': 'candidate:2 1 udp 2122260223 10.0.0.2 50001 typ host', 'sdpMid': '0', 'sdpMLineIndex': 0}


class TestScenario:
    """Full offer/answer/candidate/end exchange between T and L."""

    @pytest.mark.asyncio
    async def test_two_party_exchange(self, mailbox):
        room = await mailbox.post_offer('S1', 'T', {'type': 'offer', 'sdp': 'A'})
        assert room.status == RoomStatus.OPEN
        assert room.offer == SessionDescription('offer', 'A')
        assert room.offered_by == 'T'

        seen = await mailbox.get_room('S1', 'L')
        assert seen.has_live_offer

        room = await mailbox.post_answer('S1', 'L', {'type': 'answer', 'sdp': 'B'})
        assert room.status == RoomStatus.ANSWERED
        assert room.answer == SessionDescription('answer', 'B')
        assert room.answered_by == 'L'

        await mailbox.add_candidate('S1', 'T', 'offer', C1)
        await mailbox.add_candidate('S1', 'L', 'answer', C2)

        room = await mailbox.get_room('S1', 'T')
        assert room.offer_candidates == [C1]
        assert room.answer_candidates == [C2]

        room = await mailbox.end_room('S1', 'L')
        assert room.status == RoomStatus.ENDED
        assert room.ended_at is not None

    @pytest.mark.asyncio
    async def test_no_room_before_first_offer(self, mailbox):
        assert await mailbox.get_room('S1', 'T') is None

    @pytest.mark.asyncio
    async def test_returned_room_is_a_copy(self, mailbox, offer):
        await mailbox.post_offer('S1', 'T', offer)
        room = await mailbox.get_room('S1', 'T')
        room.offer_candidates.append(C1)

        assert (await mailbox.get_room('S1', 'T')).offer_candidates == []


class TestReoffer:
    """Re-offers overwrite the room in place."""

    @pytest.mark.asyncio
    async def test_offer_answer_cycles(self, mailbox):
        for i in range(3):
            room = await mailbox.post_offer('S1', 'T', {'type': 'offer', 'sdp': f'offer-{i}'})
            assert room.status == RoomStatus.OPEN
            assert room.answer is None
            assert room.answered_by is None

            room = await mailbox.post_answer('S1', 'L', {'type': 'answer', 'sdp': f'answer-{i}'})
            assert room.status == RoomStatus.ANSWERED
            assert room.answer.sdp == f'answer-{i}'

        assert mailbox.room_count == 1

    @pytest.mark.asyncio
    async def test_reoffer_clears_candidates(self, mailbox, offer, answer):
        await mailbox.post_offer('S1', 'T', offer)
        await mailbox.post_answer('S1', 'L', answer)
        await mailbox.add_candidate('S1', 'T', 'offer', C1)
        await mailbox.add_candidate('S1', 'L', 'answer', C2)

        room = await mailbox.post_offer('S1', 'L', {'type': 'offer', 'sdp': 'fresh'})

        assert room.offered_by == 'L'
        assert room.offer_candidates == []
        assert room.answer_candidates == []

    @pytest.mark.asyncio
    async def test_reoffer_keeps_candidates_when_configured(self, lifecycle, offer):
        mailbox = SignalingMailbox(lifecycle, reset_candidates_on_offer=False)
        await mailbox.post_offer('S1', 'T', offer)
        await mailbox.add_candidate('S1', 'T', 'offer', C1)

        room = await mailbox.post_offer('S1', 'T', offer)

        assert room.offer_candidates == [C1]

    @pytest.mark.asyncio
    async def test_offer_after_end_starts_new_call(self, mailbox, offer, answer):
        await mailbox.post_offer('S1', 'T', offer)
        await mailbox.post_answer('S1', 'L', answer)
        await mailbox.add_candidate('S1', 'T', 'offer', C1)
        await mailbox.end_room('S1', 'T')

        room = await mailbox.post_offer('S1', 'L', {'type': 'offer', 'sdp': 'second call'})

        assert room.status == RoomStatus.OPEN
        assert room.answer is None
        assert room.offer_candidates == []
        assert room.ended_at is None

    @pytest.mark.asyncio
    async def test_revision_increases(self, mailbox, offer, answer):
        first = await mailbox.post_offer('S1', 'T', offer)
        second = await mailbox.post_answer('S1', 'L', answer)

        assert second.revision > first.revision


class TestAnswerRules:
    """Answers need a live offer from the other participant."""

    @pytest.mark.asyncio
    async def test_answer_without_room(self, mailbox, answer):
        with pytest.raises(NotFound):
            await mailbox.post_answer('S1', 'L', answer)

    @pytest.mark.asyncio
    async def test_answer_to_ended_room(self, mailbox, offer, answer):
        await mailbox.post_offer('S1', 'T', offer)
        await mailbox.end_room('S1', 'T')

        with pytest.raises(InvalidState):
            await mailbox.post_answer('S1', 'L', answer)

    @pytest.mark.asyncio
    async def test_second_answer_rejected(self, mailbox, offer, answer):
        await mailbox.post_offer('S1', 'T', offer)
        await mailbox.post_answer('S1', 'L', answer)

        with pytest.raises(InvalidState):
            await mailbox.post_answer('S1', 'L', answer)

    @pytest.mark.asyncio
    async def test_cannot_answer_own_offer(self, mailbox, offer, answer):
        await mailbox.post_offer('S1', 'T', offer)

        with pytest.raises(InvalidState):
            await mailbox.post_answer('S1', 'T', answer)


class TestValidation:
    """Malformed payloads abort without side effects."""

    @pytest.mark.asyncio
    async def test_offer_with_answer_type(self, mailbox, answer):
        with pytest.raises(InvalidPayload):
            await mailbox.post_offer('S1', 'T', answer)
        assert mailbox.room_count == 0

    @pytest.mark.asyncio
    async def test_bad_answer_leaves_room_open(self, mailbox, offer):
        await mailbox.post_offer('S1', 'T', offer)

        with pytest.raises(InvalidPayload):
            await mailbox.post_answer('S1', 'L', {'type': 'answer', 'sdp': ''})

        room = await mailbox.get_room('S1', 'L')
        assert room.status == RoomStatus.OPEN
        assert room.answer is None

    @pytest.mark.asyncio
    async def test_unknown_role(self, mailbox, offer):
        await mailbox.post_offer('S1', 'T', offer)
        with pytest.raises(InvalidPayload):
            await mailbox.add_candidate('S1', 'T', 'observer', C1)

    @pytest.mark.asyncio
    async def test_empty_candidate(self, mailbox, offer):
        await mailbox.post_offer('S1', 'T', offer)
        with pytest.raises(InvalidPayload):
            await mailbox.add_candidate('S1', 'T', 'offer', {})

    @pytest.mark.asyncio
    async def test_candidate_without_room(self, mailbox):
        with pytest.raises(NotFound):
            await mailbox.add_candidate('S1', 'T', 'offer', C1)


class TestCandidateBuffering:
    """Candidates are accepted regardless of description state."""

    @pytest.mark.asyncio
    async def test_answer_candidates_before_answer(self, mailbox, offer):
        await mailbox.post_offer('S1', 'T', offer)
        await mailbox.add_candidate('S1', 'L', 'answer', C2)

        room = await mailbox.get_room('S1', 'T')
        assert room.answer is None
        assert room.answer_candidates == [C2]

    @pytest.mark.asyncio
    async def test_concurrent_appends_from_both_roles(self, mailbox, offer):
        await mailbox.post_offer('S1', 'T', offer)
        offers = [dict(C1, sdpMLineIndex=i) for i in range(10)]
        answers = [dict(C2, sdpMLineIndex=i) for i in range(10)]

        await asyncio.gather(
            *(mailbox.add_candidate('S1', 'T', 'offer', c) for c in offers),
            *(mailbox.add_candidate('S1', 'L', 'answer', c) for c in answers),
        )

        room = await mailbox.get_room('S1', 'T')
        assert room.offer_candidates == offers
        assert room.answer_candidates == answers


class TestAuthorization:
    """Third parties are refused on every operation."""

    @pytest.mark.asyncio
    async def test_outsider_forbidden_everywhere(self, mailbox, offer, answer):
        await mailbox.post_offer('S1', 'T', offer)

        with pytest.raises(Forbidden):
            await mailbox.get_room('S1', 'X')
        with pytest.raises(Forbidden):
            await mailbox.post_offer('S1', 'X', offer)
        with pytest.raises(Forbidden):
            await mailbox.post_answer('S1', 'X', answer)
        with pytest.raises(Forbidden):
            await mailbox.add_candidate('S1', 'X', 'offer', C1)
        with pytest.raises(Forbidden):
            await mailbox.end_room('S1', 'X')

        room = await mailbox.get_room('S1', 'L')
        assert room.offered_by == 'T'
        assert room.offer_candidates == []

    @pytest.mark.asyncio
    async def test_pending_booking_cannot_signal(self, mailbox, offer):
        with pytest.raises(InvalidState):
            await mailbox.post_offer('S2', 'T', offer)

    @pytest.mark.asyncio
    async def test_pending_booking_in_lenient_mode(self, bookings, offer):
        mailbox = SignalingMailbox(SessionLifecycleBridge(bookings, require_accepted=False))
        room = await mailbox.post_offer('S2', 'T', offer)
        assert room.status == RoomStatus.OPEN


class TestEndRoom:
    """Ending is idempotent and a no-op without a room."""

    @pytest.mark.asyncio
    async def test_end_without_room(self, mailbox):
        assert await mailbox.end_room('S1', 'T') is None
        assert mailbox.room_count == 0

    @pytest.mark.asyncio
    async def test_end_twice(self, mailbox, offer):
        await mailbox.post_offer('S1', 'T', offer)
        first = await mailbox.end_room('S1', 'T')
        second = await mailbox.end_room('S1', 'L')

        assert second.status == RoomStatus.ENDED
        assert second.revision == first.revision

    @pytest.mark.asyncio
    async def test_candidates_after_end_still_buffered(self, mailbox, offer):
        await mailbox.post_offer('S1', 'T', offer)
        await mailbox.end_room('S1', 'T')

        room = await mailbox.add_candidate('S1', 'L', 'answer', C2)
        assert room.status == RoomStatus.ENDED
        assert room.answer_candidates == [C2]


class TestGarbageCollection:
    """Room expiry and TTL sweep."""

    @pytest.mark.asyncio
    async def test_expire_room(self, mailbox, offer):
        await mailbox.post_offer('S1', 'T', offer)

        assert await mailbox.expire_room('S1') is True
        assert await mailbox.expire_room('S1') is False
        assert mailbox.room_count == 0

    @pytest.mark.asyncio
    async def test_sweep_only_old_ended_rooms(self, bookings, mailbox, offer):
        await bookings.apply_action('S2', 'T', 'accept')
        await mailbox.post_offer('S1', 'T', offer)
        await mailbox.post_offer('S2', 'T', offer)
        await mailbox.end_room('S1', 'T')

        assert await mailbox.sweep_ended_rooms(ttl=60) == 0

        later = utcnow() + timedelta(seconds=120)
        assert await mailbox.sweep_ended_rooms(ttl=60, now=later) == 1
        assert await mailbox.get_room('S1', 'T') is None
        assert await mailbox.get_room('S2', 'T') is not None


class TestSubscriptions:
    """Push snapshots."""

    @pytest.mark.asyncio
    async def test_subscribe_seeds_current_state(self, mailbox, offer):
        queue = mailbox.subscribe('S1')
        assert queue.get_nowait() is None

        await mailbox.post_offer('S1', 'T', offer)
        snapshot = queue.get_nowait()

        assert snapshot['status'] == 'open'
        assert snapshot['offer'] == offer

    @pytest.mark.asyncio
    async def test_snapshot_per_mutation(self, mailbox, offer, answer):
        await mailbox.post_offer('S1', 'T', offer)
        queue = mailbox.subscribe('S1')
        queue.get_nowait()

        await mailbox.post_answer('S1', 'L', answer)
        await mailbox.add_candidate('S1', 'L', 'answer', C2)
        await mailbox.end_room('S1', 'L')

        statuses = [queue.get_nowait()['status'] for _ in range(3)]
        assert statuses == ['answered', 'answered', 'ended']
        assert queue.empty()

    @pytest.mark.asyncio
    async def test_expiry_pushes_none(self, mailbox, offer):
        await mailbox.post_offer('S1', 'T', offer)
        queue = mailbox.subscribe('S1')
        queue.get_nowait()

        await mailbox.expire_room('S1')

        assert queue.get_nowait() is None

    @pytest.mark.asyncio
    async def test_full_queue_drops_oldest(self, lifecycle, offer):
        mailbox = SignalingMailbox(lifecycle, subscriber_queue_maxsize=2)
        queue = mailbox.subscribe('S1')

        await mailbox.post_offer('S1', 'T', offer)
        await mailbox.add_candidate('S1', 'T', 'offer', C1)
        await mailbox.add_candidate('S1', 'T', 'offer', C2)

        first = queue.get_nowait()
        second = queue.get_nowait()
        assert len(first['offerCandidates']) == 1
        assert len(second['offerCandidates']) == 2

    @pytest.mark.asyncio
    async def test_unsubscribe(self, mailbox, offer):
        queue = mailbox.subscribe('S1')
        assert mailbox.subscriber_count == 1

        mailbox.unsubscribe('S1', queue)
        await mailbox.post_offer('S1', 'T', offer)

        assert mailbox.subscriber_count == 0
        assert queue.qsize() == 1


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
