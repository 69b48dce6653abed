"""
Tests for endpoint connections: connection manager, loopback transport
and the signaling client's dispatch.
"""

import asyncio
import json
import unittest

from errors import NotConnected
from peering.loopback import LoopbackHub
from peering.manager import ConnectionManager
from peering.models import ConnectionState
from peering.node import PeerNode
from peering.signaling_client import SignalingClient
from signaling.models import PeerInfo
from transfer.manager import TransferManager
from transfer.source import BytesSource


class InProcessRelay:
    """Routes signal payloads between managers the way the relay would."""

    def __init__(self):
        self.managers: dict[str, ConnectionManager] = {}
        self.forwarded = 0

    def sender_for(self, peer_id):
        async def send_signal(to, payload):
            self.forwarded += 1
            target = self.managers.get(to)
            if target is not None:
                await target.handle_signal(peer_id, payload)
        return send_signal


async def wait_until(predicate, timeout=2.0):
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.005)
    await asyncio.wait_for(_poll(), timeout)


class TestConnectionManager(unittest.IsolatedAsyncioTestCase):
    """Channel establishment and the per-peer send primitive"""

    async def asyncSetUp(self):
        self.hub = LoopbackHub()
        self.relay = InProcessRelay()
        self.a = ConnectionManager(self.hub.factory, self.relay.sender_for("a"))
        self.b = ConnectionManager(self.hub.factory, self.relay.sender_for("b"))
        self.relay.managers = {"a": self.a, "b": self.b}

        self.opened: list[tuple[str, str]] = []
        self.received: list[tuple[str, bytes]] = []
        self.closed: list[tuple[str, str]] = []
        for name, manager in (("a", self.a), ("b", self.b)):
            manager.on_open(self._recorder(self.opened, name))
            manager.on_close(self._recorder(self.closed, name))
        self.b.on_message(self._on_b_message)

    def _recorder(self, target, name):
        async def record(value):
            target.append((name, getattr(value, "peer_id", value)))
        return record

    async def _on_b_message(self, peer_id, data):
        self.received.append((peer_id, data))

    async def connect(self):
        # b joined after a: a is told "peer-joined(b)", b gets a in its member list
        await self.a.peer_joined(PeerInfo(id="b", display_name="Beta"))
        await self.b.add_peers([PeerInfo(id="a", display_name="Alpha")])
        await wait_until(lambda: self.a.is_open("b") and self.b.is_open("a"))

    async def test_roles_follow_announcement(self):
        await self.connect()
        self.assertTrue(self.b.get_connection("a").initiator)
        self.assertFalse(self.a.get_connection("b").initiator)
        self.assertEqual(sorted(self.opened), [("a", "b"), ("b", "a")])
        self.assertEqual(self.relay.forwarded, 2)  # offer and answer

    async def test_send_delivers_in_order(self):
        await self.connect()
        for i in range(5):
            await self.a.send("b", f"msg-{i}".encode())
        await wait_until(lambda: len(self.received) == 5)
        self.assertEqual([d for _, d in self.received], [f"msg-{i}".encode() for i in range(5)])
        self.assertTrue(all(p == "a" for p, _ in self.received))

    async def test_send_to_unknown_or_connecting_peer_fails(self):
        with self.assertRaises(NotConnected):
            await self.a.send("nobody", b"x")
        await self.a.peer_joined(PeerInfo(id="b", display_name="Beta"))
        self.assertEqual(self.a.get_connection("b").state, ConnectionState.CONNECTING)
        with self.assertRaises(NotConnected):
            await self.a.send("b", b"x")

    async def test_close_reaches_both_sides(self):
        await self.connect()
        await self.a.peer_left("b")
        await wait_until(lambda: ("b", "a") in self.closed)
        self.assertIn(("a", "b"), self.closed)
        self.assertIsNone(self.a.get_connection("b"))
        self.assertIsNone(self.b.get_connection("a"))
        with self.assertRaises(NotConnected):
            await self.b.send("a", b"late")

    async def test_duplicate_announcement_is_ignored(self):
        await self.connect()
        await self.b.add_peers([PeerInfo(id="a", display_name="Alpha")])
        self.assertEqual(len(self.b.get_connections()), 1)
        self.assertTrue(self.b.is_open("a"))

    async def test_signal_from_unknown_peer_dropped(self):
        await self.a.handle_signal("stranger", {"type": "offer", "token": "x"})
        self.assertEqual(self.a.get_connections(), [])


class TestEndToEndTransfer(unittest.IsolatedAsyncioTestCase):
    """Two endpoints exchanging a file over a loopback channel"""

    async def test_file_and_disconnect(self):
        hub = LoopbackHub()
        relay = InProcessRelay()
        a = ConnectionManager(hub.factory, relay.sender_for("a"))
        b = ConnectionManager(hub.factory, relay.sender_for("b"))
        relay.managers = {"a": a, "b": b}
        sender, receiver = TransferManager(a, save_dir=None), TransferManager(b, save_dir=None)

        events: list[tuple[str, dict]] = []

        async def record(event_type, data):
            events.append((event_type, data))

        receiver.on_event(record)

        await b.peer_joined(PeerInfo(id="a", display_name="Alpha"))
        await a.add_peers([PeerInfo(id="b", display_name="Beta")])
        await wait_until(lambda: a.is_open("b") and b.is_open("a"))

        data = bytes(range(256)) * 160  # 40 KiB
        await sender.send_file("b", BytesSource("scan.pdf", data, "application/pdf"))
        await wait_until(lambda: any(t == "file_received" for t, _ in events))

        received = next(d for t, d in events if t == "file_received")
        self.assertEqual(received["peer_id"], "a")
        self.assertEqual(received["data"], data)
        progress = [d["progress"] for t, d in events if t == "transfer_progress"]
        self.assertEqual(progress, [0.4, 0.8, 1.0])

        await a.close("b")
        await wait_until(lambda: b.get_connection("a") is None)


class FakeWebSocket:
    def __init__(self):
        self.sent: list[dict] = []

    async def send(self, text):
        self.sent.append(json.loads(text))


class FakeManager:
    def __init__(self):
        self.calls = []

    async def add_peers(self, peers):
        self.calls.append(("add_peers", [p.id for p in peers]))

    async def peer_joined(self, peer):
        self.calls.append(("peer_joined", peer.id))

    async def peer_left(self, peer_id):
        self.calls.append(("peer_left", peer_id))

    async def handle_signal(self, sender, payload):
        self.calls.append(("signal", sender, payload))


class TestSignalingClient(unittest.IsolatedAsyncioTestCase):
    """Dispatch of relay messages on the endpoint side"""

    async def asyncSetUp(self):
        self.client = SignalingClient("ws://relay.invalid/ws", {"os": "Linux"})
        self.client._ws = FakeWebSocket()
        self.client.manager = FakeManager()

    async def test_ping_answered_with_pong(self):
        await self.client.handle('{"type": "ping"}')
        self.assertEqual(self.client._ws.sent, [{"type": "pong"}])

    async def test_identity_assigned(self):
        await self.client.handle('{"type": "peer-info", "peer": {"id": "me", "displayName": "Zeta", "deviceInfo": {}}}')
        self.assertEqual(self.client.peer_id, "me")
        info = await self.client.wait_registered(timeout=1)
        self.assertEqual(info.display_name, "Zeta")

    async def test_membership_routed_to_manager(self):
        await self.client.handle('{"type": "peers", "peers": [{"id": "x", "displayName": "Xi"}]}')
        await self.client.handle('{"type": "peer-joined", "peer": {"id": "y", "displayName": "Psi"}}')
        await self.client.handle('{"type": "signal", "from": "x", "payload": {"sdp": 1}}')
        await self.client.handle('{"type": "peer-left", "peerId": "x"}')
        self.assertEqual(self.client.manager.calls, [
            ("add_peers", ["x"]),
            ("peer_joined", "y"),
            ("signal", "x", {"sdp": 1}),
            ("peer_left", "x"),
        ])

    async def test_send_signal_addresses_recipient(self):
        await self.client.send_signal("peer-9", {"candidate": "abc"})
        self.assertEqual(self.client._ws.sent, [{"type": "signal", "to": "peer-9", "payload": {"candidate": "abc"}}])

    async def test_malformed_relay_message_ignored(self):
        await self.client.handle("garbage")
        await self.client.handle('{"type": "register"}')
        self.assertEqual(self.client.manager.calls, [])
        self.assertEqual(self.client._ws.sent, [])


class TestPeerNode(unittest.IsolatedAsyncioTestCase):
    """Endpoint composition"""

    async def test_member_list_starts_negotiation(self):
        node = PeerNode(LoopbackHub().factory, url="ws://relay.invalid/ws", device_info={"os": "Linux"})
        node.signaling._ws = FakeWebSocket()

        await node.signaling.handle('{"type": "peer-info", "peer": {"id": "me", "displayName": "Eta"}}')
        await node.signaling.handle('{"type": "peers", "peers": [{"id": "other", "displayName": "Nu"}]}')

        self.assertEqual(node.peer_id, "me")
        conn = node.connections.get_connection("other")
        self.assertTrue(conn.initiator)
        self.assertEqual(conn.display_name, "Nu")
        offer = node.signaling._ws.sent[0]
        self.assertEqual(offer["type"], "signal")
        self.assertEqual(offer["to"], "other")
        self.assertEqual(offer["payload"]["type"], "offer")

        await node.signaling.handle('{"type": "peer-left", "peerId": "other"}')
        self.assertIsNone(node.connections.get_connection("other"))


if __name__ == "__main__":
    unittest.main()
