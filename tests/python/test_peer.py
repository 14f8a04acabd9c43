"""Tests for the aiortc peer adapter, run as an in-process loopback."""

import pytest

from skillswap_rtc.client import AiortcPeerConnection
from skillswap_rtc.core import InvalidPayload, MediaUnavailable, RemoteDescriptionPending

REMOTE_HOST = 'candidate:1 1 udp 2122260223 10.0.0.1 50000 typ host'


def _audio_peer():
    """Peer with a receive-capable audio transceiver and no capture."""
    peer = AiortcPeerConnection([], capture_devices=[])
    peer._pc.addTransceiver('audio')
    return peer


def _sdp_candidates(sdp):
    return {
        line[len('a='):].strip()
        for line in sdp.splitlines()
        if line.startswith('a=candidate:')
    }


class TestLocalCandidates:
    """Candidates gathered during setLocalDescription are handed out."""

    @pytest.mark.asyncio
    async def test_emitted_after_local_description(self):
        peer = _audio_peer()
        emitted = []
        peer.on_ice_candidate = emitted.append
        try:
            offer = await peer.create_offer()
            await peer.set_local_description(offer)

            assert peer.signaling_state == 'have-local-offer'
            local = peer.local_description
            assert local.type == 'offer'

            for record in emitted:
                assert record['candidate'].startswith('candidate:')
                assert record['sdpMid'] == '0'
                assert record['sdpMLineIndex'] == 0
            assert {r['candidate'] for r in emitted} == _sdp_candidates(local.sdp)
        finally:
            await peer.close()

    @pytest.mark.asyncio
    async def test_each_candidate_emitted_once(self):
        peer = _audio_peer()
        emitted = []
        peer.on_ice_candidate = emitted.append
        try:
            await peer.set_local_description(await peer.create_offer())
            count = len(emitted)

            peer._emit_local_candidates()

            assert len(emitted) == count
        finally:
            await peer.close()


class TestLoopback:
    """Offer, answer and candidates between two local peers."""

    @pytest.mark.asyncio
    async def test_offer_answer_and_candidates(self):
        offerer = _audio_peer()
        answerer = _audio_peer()
        offer_candidates = []
        answer_candidates = []
        offerer.on_ice_candidate = offer_candidates.append
        answerer.on_ice_candidate = answer_candidates.append
        try:
            await offerer.set_local_description(await offerer.create_offer())

            await answerer.set_remote_description(offerer.local_description)
            assert answerer.signaling_state == 'have-remote-offer'
            for candidate in offer_candidates:
                await answerer.add_ice_candidate(candidate)

            await answerer.set_local_description(await answerer.create_answer())
            assert answerer.signaling_state == 'stable'

            await offerer.set_remote_description(answerer.local_description)
            assert offerer.signaling_state == 'stable'
            for candidate in answer_candidates:
                await offerer.add_ice_candidate(candidate)
        finally:
            await offerer.close()
            await answerer.close()


class TestRemoteCandidates:
    """Validation of candidates coming from the other side."""

    @pytest.mark.asyncio
    async def test_pending_until_remote_description(self):
        peer = _audio_peer()
        try:
            with pytest.raises(RemoteDescriptionPending):
                await peer.add_ice_candidate(
                    {'candidate': REMOTE_HOST, 'sdpMid': '0', 'sdpMLineIndex': 0}
                )
        finally:
            await peer.close()

    @pytest.mark.asyncio
    async def test_candidate_validation(self):
        offerer = _audio_peer()
        peer = _audio_peer()
        try:
            await offerer.set_local_description(await offerer.create_offer())
            await peer.set_remote_description(offerer.local_description)

            with pytest.raises(InvalidPayload):
                await peer.add_ice_candidate({'candidate': 'candidate:garbage', 'sdpMid': '0'})
            with pytest.raises(InvalidPayload):
                await peer.add_ice_candidate({'candidate': REMOTE_HOST})

            # End-of-candidates marker is accepted silently
            await peer.add_ice_candidate({'candidate': '', 'sdpMid': '0'})

            await peer.add_ice_candidate({'candidate': REMOTE_HOST, 'sdpMid': '0', 'sdpMLineIndex': 0})
            await peer.add_ice_candidate({'candidate': REMOTE_HOST[len('candidate:'):], 'sdpMLineIndex': 0})
        finally:
            await offerer.close()
            await peer.close()


class TestMedia:
    """Capture setup."""

    @pytest.mark.asyncio
    async def test_no_capture_devices(self):
        peer = AiortcPeerConnection([], capture_devices=[])
        try:
            with pytest.raises(MediaUnavailable):
                await peer.acquire_media()
        finally:
            await peer.close()

    @pytest.mark.asyncio
    async def test_unopenable_device(self, tmp_path):
        peer = AiortcPeerConnection(
            [], capture_devices=[{'file': str(tmp_path / 'missing.wav')}]
        )
        try:
            with pytest.raises(MediaUnavailable):
                await peer.acquire_media()
        finally:
            await peer.close()


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
