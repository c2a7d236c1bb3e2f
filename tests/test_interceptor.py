"""Tests for the interception layer."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from peertrace.errors import CapabilityError
from peertrace.interceptor import LISTENERS, Instrumentation, connection_id, is_traced
from peertrace.tracer import Tracer
from tests.fakes import FakePeerConnection, FakeStream, FakeTrack, RecordingChannel


def events_after_create(channel: RecordingChannel) -> list[dict]:
    return [e for e in channel.events if e["method"] != "create"]


class TestInstall:
    def test_traced_class_keeps_isinstance(self, instrumentation: Instrumentation) -> None:
        cls = instrumentation.install()

        assert issubclass(cls, FakePeerConnection)
        assert cls.__name__ == "FakePeerConnection"
        assert is_traced(cls)

    def test_install_is_idempotent(self, instrumentation: Instrumentation) -> None:
        assert instrumentation.install() is instrumentation.install()

    def test_missing_capability_fails_before_any_connection(self, channel: RecordingChannel) -> None:
        inst = Instrumentation(Tracer(channel), namespace=SimpleNamespace())

        with pytest.raises(CapabilityError):
            inst.install()
        with pytest.raises(CapabilityError):
            inst.create_peer_connection()

        assert not inst.installed
        assert inst.peer_connection_class is None
        assert channel.events == []

    def test_missing_methods_are_skipped(self, channel: RecordingChannel) -> None:
        class Minimal:
            async def createOffer(self):
                return "offer"

        inst = Instrumentation(Tracer(channel), namespace={"RTCPeerConnection": Minimal})
        cls = inst.install()

        assert "createOffer" in vars(cls)
        assert not hasattr(cls, "addStream")
        assert not hasattr(cls, "createDataChannel")

    def test_patch_publishes_and_uninstall_restores(
        self, instrumentation: Instrumentation, namespace: SimpleNamespace
    ) -> None:
        traced = instrumentation.install(patch=True)
        assert namespace.RTCPeerConnection is traced

        instrumentation.uninstall()
        assert namespace.RTCPeerConnection is FakePeerConnection

    @pytest.mark.asyncio
    async def test_second_setup_does_not_double_wrap(
        self, channel: RecordingChannel, namespace: SimpleNamespace
    ) -> None:
        first = Instrumentation(Tracer(channel), namespace=namespace, stats_interval=3600)
        first.install(patch=True)
        second = Instrumentation(Tracer(channel), namespace=namespace, stats_interval=3600)
        second.install(patch=True)

        assert second.peer_connection_class is first.peer_connection_class

        pc = second.create_peer_connection()
        channel.events.clear()
        await pc.createOffer()

        assert channel.methods() == ["createOffer", "createOfferOnSuccess"]
        first.uninstall()


class TestConstruction:
    @pytest.mark.asyncio
    async def test_create_event_and_unique_ids(
        self, instrumentation: Instrumentation, channel: RecordingChannel
    ) -> None:
        a = instrumentation.create_peer_connection({"iceServers": []})
        b = instrumentation.create_peer_connection()

        assert isinstance(a, FakePeerConnection)
        assert a.configuration == {"iceServers": []}
        assert connection_id(a) != connection_id(b)
        assert channel.events[0] == {
            "method": "create",
            "id": connection_id(a),
            "args": {"args": [{"iceServers": []}], "kwargs": {}},
        }
        assert a._peertrace_stats.running

    @pytest.mark.asyncio
    async def test_listeners_trace_each_notification(
        self, instrumentation: Instrumentation, channel: RecordingChannel
    ) -> None:
        pc = instrumentation.create_peer_connection()
        pc_id = connection_id(pc)

        pc.signalingState = "have-local-offer"
        pc.emit("signalingstatechange")
        pc.iceGatheringState = "complete"
        pc.emit("icegatheringstatechange")
        pc.connectionState = "connected"
        pc.emit("connectionstatechange")
        pc.emit("track", FakeTrack("video", "v1"))
        pc.emit("datachannel", SimpleNamespace(id=3, label="chat"))
        pc.emit("negotiationneeded")

        assert events_after_create(channel) == [
            {"method": "signalingstatechange", "id": pc_id, "args": "have-local-offer"},
            {"method": "onicegatheringstatechange", "id": pc_id, "args": "complete"},
            {"method": "connectionstatechange", "id": pc_id, "args": "connected"},
            {"method": "ontrack", "id": pc_id, "args": {"track": {"id": "v1", "kind": "video"}, "streams": []}},
            {"method": "ondatachannel", "id": pc_id, "args": [3, "chat"]},
            {"method": "onnegotiationneeded", "id": pc_id, "args": {}},
        ]

    @pytest.mark.asyncio
    async def test_browser_style_track_event(
        self, instrumentation: Instrumentation, channel: RecordingChannel
    ) -> None:
        pc = instrumentation.create_peer_connection()
        event = SimpleNamespace(track=FakeTrack("audio", "a1"), streams=[SimpleNamespace(id="s1")])

        pc.emit("track", event)

        assert channel.events[-1]["args"] == {"track": {"id": "a1", "kind": "audio"}, "streams": ["s1"]}

    @pytest.mark.asyncio
    async def test_every_listener_registered(self, instrumentation: Instrumentation) -> None:
        pc = instrumentation.create_peer_connection()

        assert set(pc._listeners) == set(LISTENERS)

    @pytest.mark.asyncio
    async def test_remote_tracks_reach_sink(self, channel: RecordingChannel, namespace: SimpleNamespace) -> None:
        attached = []
        sink = SimpleNamespace(attach=attached.append)
        inst = Instrumentation(Tracer(channel), namespace=namespace, stats_interval=3600, track_sink=sink)
        pc = inst.create_peer_connection()
        track = FakeTrack("video", "v9")

        pc.emit("track", track)

        assert attached == [track]


class TestNegotiation:
    @pytest.mark.asyncio
    async def test_create_offer_scenario(
        self, instrumentation: Instrumentation, channel: RecordingChannel
    ) -> None:
        pc = instrumentation.create_peer_connection()
        pc_id = connection_id(pc)

        offer = await pc.createOffer({"iceRestart": False})

        assert offer.type == "offer"
        assert events_after_create(channel) == [
            {"method": "createOffer", "id": pc_id, "args": {"iceRestart": False}},
            {"method": "createOfferOnSuccess", "id": pc_id, "args": {"sdp": "v=0 offer", "type": "offer"}},
        ]

    @pytest.mark.asyncio
    async def test_call_event_precedes_underlying_effect(
        self, instrumentation: Instrumentation, channel: RecordingChannel
    ) -> None:
        pc = instrumentation.create_peer_connection()

        pending = pc.createAnswer()
        assert channel.methods()[-1] == "createAnswer"
        assert pc.calls == []

        await pending
        assert pc.calls == ["createAnswer"]
        assert channel.methods()[-1] == "createAnswerOnSuccess"

    @pytest.mark.asyncio
    async def test_failure_is_traced_and_reraised_unchanged(
        self, instrumentation: Instrumentation, channel: RecordingChannel
    ) -> None:
        pc = instrumentation.create_peer_connection()
        error = ValueError("bad state")
        pc.fail_with = error

        with pytest.raises(ValueError) as excinfo:
            await pc.createAnswer()

        assert excinfo.value is error
        assert events_after_create(channel)[-1] == {
            "method": "createAnswerOnFailure",
            "id": connection_id(pc),
            "args": "ValueError: bad state",
        }

    @pytest.mark.asyncio
    async def test_every_call_gets_exactly_one_outcome(
        self, instrumentation: Instrumentation, channel: RecordingChannel
    ) -> None:
        pc = instrumentation.create_peer_connection()
        outcomes = [True, False, True, True, False]

        for ok in outcomes:
            pc.fail_with = None if ok else RuntimeError("nope")
            try:
                await pc.createOffer()
            except RuntimeError:
                pass

        methods = [e["method"] for e in events_after_create(channel)]
        assert methods.count("createOffer") == len(outcomes)
        expected = []
        for ok in outcomes:
            expected += ["createOffer", "createOfferOnSuccess" if ok else "createOfferOnFailure"]
        assert methods == expected

    @pytest.mark.asyncio
    async def test_description_application(
        self, instrumentation: Instrumentation, channel: RecordingChannel
    ) -> None:
        pc = instrumentation.create_peer_connection()
        offer = await pc.createOffer()
        channel.events.clear()

        await pc.setLocalDescription(offer)
        await pc.setRemoteDescription(description=offer)

        pc_id = connection_id(pc)
        assert channel.events == [
            {"method": "setLocalDescription", "id": pc_id, "args": {"sdp": "v=0 offer", "type": "offer"}},
            {"method": "setLocalDescriptionOnSuccess", "id": pc_id, "args": None},
            {"method": "setRemoteDescription", "id": pc_id, "args": {"sdp": "v=0 offer", "type": "offer"}},
            {"method": "setRemoteDescriptionOnSuccess", "id": pc_id, "args": None},
        ]

    @pytest.mark.asyncio
    async def test_synchronous_primitive(
        self, instrumentation: Instrumentation, channel: RecordingChannel
    ) -> None:
        pc = instrumentation.create_peer_connection()
        channel.events.clear()

        assert pc.addIceCandidate({"candidate": "c1"}) is None
        pc.fail_with = KeyError("mline")
        with pytest.raises(KeyError):
            pc.addIceCandidate({"candidate": "c2"})

        assert channel.methods() == [
            "addIceCandidate",
            "addIceCandidateOnSuccess",
            "addIceCandidate",
            "addIceCandidateOnFailure",
        ]
        assert channel.events[-1]["args"] == "KeyError: 'mline'"


class TestMedia:
    @pytest.mark.asyncio
    async def test_add_track_and_replace(
        self, instrumentation: Instrumentation, channel: RecordingChannel
    ) -> None:
        pc = instrumentation.create_peer_connection()
        mic = FakeTrack("audio", "a1")
        other = FakeTrack("audio", "a2")

        sender = pc.addTrack(mic, FakeStream("s1", [mic]))
        sender.replaceTrack(other)

        assert sender.track is other
        assert events_after_create(channel) == [
            {"method": "addTrack", "id": connection_id(pc),
             "args": {"track": {"id": "a1", "kind": "audio"}, "streams": ["s1"]}},
            {"method": "replaceTrack", "id": connection_id(pc),
             "args": {"from": {"id": "a1", "kind": "audio"}, "to": {"id": "a2", "kind": "audio"}}},
        ]

    @pytest.mark.asyncio
    async def test_remove_track_names_the_track(
        self, instrumentation: Instrumentation, channel: RecordingChannel
    ) -> None:
        pc = instrumentation.create_peer_connection()
        sender = pc.addTrack(FakeTrack("video", "v1"))

        pc.removeTrack(sender)

        assert channel.events[-1]["method"] == "removeTrack"
        assert channel.events[-1]["args"] == {"track": {"id": "v1", "kind": "video"}}

    @pytest.mark.asyncio
    async def test_add_transceiver(self, instrumentation: Instrumentation, channel: RecordingChannel) -> None:
        pc = instrumentation.create_peer_connection()

        pc.addTransceiver("audio", direction="recvonly")
        transceiver = pc.addTransceiver(FakeTrack("video", "v1"), direction="sendonly")
        transceiver.sender.replaceTrack(None)

        added = [e["args"] for e in channel.events if e["method"] == "transceiverAdded"]
        assert added[0]["index"] == 0
        assert added[0]["kind"] == "audio"
        assert added[0]["direction"] == "recvonly"
        assert added[1]["index"] == 1
        assert added[1]["kind"] == "video"
        assert added[1]["sender"] == {"track": "v1"}
        assert channel.events[-1]["args"] == {"from": {"id": "v1", "kind": "video"}, "to": None}

    @pytest.mark.asyncio
    async def test_streams_when_supported(self, channel: RecordingChannel) -> None:
        class LegacyPeerConnection(FakePeerConnection):
            def addStream(self, stream):
                self.stream = stream

            def removeStream(self, stream):
                self.stream = None

        inst = Instrumentation(Tracer(channel), namespace={"RTCPeerConnection": LegacyPeerConnection},
                               stats_interval=3600)
        pc = inst.create_peer_connection()
        stream = FakeStream("s1", [FakeTrack("audio", "a1"), FakeTrack("video", "v1")])

        pc.addStream(stream)
        pc.removeStream(stream)

        assert channel.methods()[-2:] == ["addStream", "removeStream"]
        assert channel.events[-1]["args"] == {
            "id": "s1",
            "tracks": [{"id": "a1", "kind": "audio"}, {"id": "v1", "kind": "video"}],
        }

    @pytest.mark.asyncio
    async def test_close_and_data_channel_trace_arguments(
        self, instrumentation: Instrumentation, channel: RecordingChannel
    ) -> None:
        pc = instrumentation.create_peer_connection()

        dc = pc.createDataChannel("chat", ordered=False)
        pc.close()

        assert dc.label == "chat"
        assert pc.connectionState == "closed"
        assert events_after_create(channel) == [
            {"method": "createDataChannel", "id": connection_id(pc),
             "args": {"args": ["chat"], "kwargs": {"ordered": False}}},
            {"method": "close", "id": connection_id(pc), "args": {"args": [], "kwargs": {}}},
        ]
