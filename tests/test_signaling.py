"""
Tests for the room registry, signal relay and signaling messages.
"""

import asyncio
import json
import unittest

from errors import MalformedMessage
from signaling.identity import (
    GREEK_NAMES,
    display_name_for,
    locality_key,
    normalize_address,
    string_hash,
)
from signaling.models import (
    Peer,
    PeerLeftMessage,
    RegisterMessage,
    SignalMessage,
    parse_client_message,
    parse_server_message,
)
from signaling.registry import RoomRegistry
from signaling.relay import SignalRelay


class FakeSocket:
    """Records everything the registry writes to a peer."""

    def __init__(self, fail: bool = False):
        self.sent: list[dict] = []
        self.closed = False
        self.fail = fail

    async def send_text(self, text: str) -> None:
        if self.fail:
            raise RuntimeError("socket is gone")
        self.sent.append(json.loads(text))

    async def close(self) -> None:
        self.closed = True

    def of_type(self, kind: str) -> list[dict]:
        return [m for m in self.sent if m["type"] == kind]


class SlowSocket(FakeSocket):
    """Suspends on every write, like a real network socket."""

    async def send_text(self, text: str) -> None:
        await asyncio.sleep(0)
        await super().send_text(text)


def make_peer(peer_id: str, address: str, fail: bool = False) -> Peer:
    return Peer(id=peer_id, address=address, socket=FakeSocket(fail=fail))


class TestIdentity(unittest.TestCase):
    """Locality keys and display names"""

    def test_ipv4_locality_is_first_three_octets(self):
        self.assertEqual(locality_key("10.0.0.5"), "10.0.0")
        self.assertEqual(locality_key("10.0.0.200"), "10.0.0")
        self.assertNotEqual(locality_key("10.0.1.5"), "10.0.0")

    def test_ipv6_locality_is_first_four_groups(self):
        self.assertEqual(locality_key("fe80:1:2:3:4:5:6:7"), "fe80:1:2:3")

    def test_loopback_normalized(self):
        self.assertEqual(normalize_address("::1"), "127.0.0.1")
        self.assertEqual(normalize_address("::ffff:127.0.0.1"), "127.0.0.1")
        self.assertEqual(locality_key("::1"), "127.0.0")

    def test_string_hash_matches_31_multiplier_hash(self):
        self.assertEqual(string_hash(""), 0)
        self.assertEqual(string_hash("a"), 97)
        self.assertEqual(string_hash("hello"), 99162322)
        # Wraps to a signed 32-bit value
        self.assertEqual(string_hash("polygenelubricants"), -2147483648)

    def test_display_name_is_deterministic(self):
        name = display_name_for("3f2b6c1e-0000-4000-8000-000000000000")
        self.assertIn(name, GREEK_NAMES)
        self.assertEqual(name, display_name_for("3f2b6c1e-0000-4000-8000-000000000000"))


class TestRoomRegistry(unittest.IsolatedAsyncioTestCase):
    """Room membership and notifications"""

    def setUp(self):
        self.registry = RoomRegistry(ping_interval=30)

    async def test_first_peer_sees_empty_room(self):
        a = make_peer("a", "10.0.0.5")
        others = await self.registry.register(a)
        self.assertEqual(others, [])
        self.assertEqual(a.locality_key, "10.0.0")
        self.assertEqual(a.display_name, display_name_for("a"))

    async def test_newcomer_gets_members_and_members_get_one_join(self):
        a = make_peer("a", "10.0.0.5")
        b = make_peer("b", "10.0.0.9")
        await self.registry.register(a)
        others = await self.registry.register(b)

        self.assertEqual([p.id for p in others], ["a"])
        joined = a.socket.of_type("peer-joined")
        self.assertEqual(len(joined), 1)
        self.assertEqual(joined[0]["peer"]["id"], "b")
        self.assertEqual(joined[0]["peer"]["displayName"], b.display_name)
        # The newcomer is never told about itself
        self.assertEqual(b.socket.of_type("peer-joined"), [])

    async def test_concurrent_registrations_see_each_other(self):
        c = Peer(id="c", address="10.0.0.2", socket=SlowSocket())
        a = Peer(id="a", address="10.0.0.5", socket=SlowSocket())
        b = Peer(id="b", address="10.0.0.9", socket=SlowSocket())
        await self.registry.register(c)

        others_a, others_b = await asyncio.gather(self.registry.register(a), self.registry.register(b))

        def knows(peer, others, other_id):
            told = [m["peer"]["id"] for m in peer.socket.of_type("peer-joined")]
            return other_id in told or other_id in [p.id for p in others]

        self.assertTrue(knows(a, others_a, "b"))
        self.assertTrue(knows(b, others_b, "a"))
        self.assertEqual(sorted(m["peer"]["id"] for m in c.socket.of_type("peer-joined")), ["a", "b"])
        self.assertEqual(len(self.registry.members("10.0.0")), 3)

    async def test_rooms_are_isolated_by_locality(self):
        a = make_peer("a", "10.0.0.5")
        c = make_peer("c", "192.168.1.5")
        await self.registry.register(a)
        others = await self.registry.register(c)

        self.assertEqual(others, [])
        self.assertEqual(a.socket.sent, [])
        self.assertEqual(len(self.registry.rooms()), 2)

    async def test_unregister_notifies_remaining_members(self):
        a = make_peer("a", "10.0.0.5")
        b = make_peer("b", "10.0.0.9")
        await self.registry.register(a)
        await self.registry.register(b)

        await self.registry.unregister(b)
        left = a.socket.of_type("peer-left")
        self.assertEqual(left, [{"type": "peer-left", "peerId": "b"}])
        self.assertIsNone(self.registry.get_peer("b"))

    async def test_empty_room_is_deleted(self):
        a = make_peer("a", "10.0.0.5")
        await self.registry.register(a)
        await self.registry.unregister(a)
        self.assertEqual(self.registry.rooms(), {})
        # Second unregister is a no-op
        await self.registry.unregister(a)

    async def test_failing_peer_is_skipped(self):
        broken = make_peer("broken", "10.0.0.5", fail=True)
        a = make_peer("a", "10.0.0.6")
        await self.registry.register(broken)
        await self.registry.register(a)
        b = make_peer("b", "10.0.0.7")
        others = await self.registry.register(b)

        self.assertEqual(sorted(p.id for p in others), ["a", "broken"])
        self.assertEqual(len(a.socket.of_type("peer-joined")), 1)


class TestLiveness(unittest.IsolatedAsyncioTestCase):
    """Liveness probes and eviction"""

    def setUp(self):
        self.registry = RoomRegistry(ping_interval=30)

    async def test_live_peers_are_probed(self):
        a = make_peer("a", "10.0.0.5")
        await self.registry.register(a)
        evicted = await self.registry.check_liveness(now=a.last_seen + 30)
        self.assertEqual(evicted, [])
        self.assertEqual(a.socket.of_type("ping"), [{"type": "ping"}])

    async def test_silent_peer_is_evicted(self):
        a = make_peer("a", "10.0.0.5")
        b = make_peer("b", "10.0.0.9")
        await self.registry.register(a)
        await self.registry.register(b)

        now = a.last_seen + 61
        b.last_seen = now - 1  # b answered recently
        evicted = await self.registry.check_liveness(now=now)

        self.assertEqual([p.id for p in evicted], ["a"])
        self.assertTrue(a.socket.closed)
        self.assertEqual(b.socket.of_type("peer-left"), [{"type": "peer-left", "peerId": "a"}])
        self.assertEqual([p.id for p in self.registry.members("10.0.0")], ["b"])

    async def test_touch_keeps_peer_alive(self):
        a = make_peer("a", "10.0.0.5")
        await self.registry.register(a)
        registered_at = a.last_seen
        self.registry.touch(a)
        self.assertGreaterEqual(a.last_seen, registered_at)
        evicted = await self.registry.check_liveness(now=a.last_seen + 60)
        self.assertEqual(evicted, [])


class TestSignalRelay(unittest.IsolatedAsyncioTestCase):
    """Forwarding negotiation payloads"""

    async def asyncSetUp(self):
        self.registry = RoomRegistry()
        self.relay = SignalRelay(self.registry)
        self.a = make_peer("a", "10.0.0.5")
        self.b = make_peer("b", "10.0.0.9")
        self.c = make_peer("c", "172.16.0.1")
        for peer in (self.a, self.b, self.c):
            await self.registry.register(peer)

    async def test_payload_forwarded_verbatim(self):
        payload = {"sdp": "v=0", "nested": [1, 2, {"x": None}]}
        delivered = await self.relay.relay(self.a, "b", payload)
        self.assertTrue(delivered)
        self.assertEqual(
            self.b.socket.of_type("signal"),
            [{"type": "signal", "from": "a", "payload": payload}],
        )

    async def test_absent_recipient_is_dropped(self):
        self.assertFalse(await self.relay.relay(self.a, "nobody", {"x": 1}))
        self.assertFalse(await self.relay.relay(self.a, None, {"x": 1}))

    async def test_other_room_is_unreachable(self):
        self.assertFalse(await self.relay.relay(self.a, "c", {"x": 1}))
        self.assertEqual(self.c.socket.of_type("signal"), [])


class TestMessages(unittest.TestCase):
    """Signaling message parsing"""

    def test_parse_register(self):
        msg = parse_client_message('{"type": "register", "deviceInfo": {"os": "Linux"}}')
        self.assertIsInstance(msg, RegisterMessage)
        self.assertEqual(msg.device_info, {"os": "Linux"})

    def test_parse_signal_both_directions(self):
        out = parse_client_message('{"type": "signal", "to": "b", "payload": {"k": 1}}')
        self.assertIsInstance(out, SignalMessage)
        self.assertEqual(out.to, "b")
        back = parse_server_message('{"type": "signal", "from": "a", "payload": "opaque"}')
        self.assertEqual(back.sender, "a")
        self.assertEqual(back.payload, "opaque")

    def test_peer_left_wire_format(self):
        self.assertEqual(json.loads(PeerLeftMessage(peer_id="x").to_json()), {"type": "peer-left", "peerId": "x"})

    def test_malformed_messages_rejected(self):
        for raw in ["not json", '{"type": "unknown"}', '{"no": "type"}', "[]"]:
            with self.assertRaises(MalformedMessage):
                parse_client_message(raw)
        # Server-only kinds are not accepted from clients
        with self.assertRaises(MalformedMessage):
            parse_client_message('{"type": "ping"}')


if __name__ == "__main__":
    unittest.main()
