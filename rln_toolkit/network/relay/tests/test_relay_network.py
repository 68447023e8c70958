"""Opt-in network tests for the RLN relay protocol."""

from __future__ import annotations

import os
import socket

import pytest
import trio
from multiaddr import Multiaddr

from rln_toolkit.network.relay.client import build_request, relay_signal
from rln_toolkit.network.relay.constants import STATUS_ADDED, STATUS_BREACH
from rln_toolkit.network.relay.protocol import register_rln_relay_protocol
from rln_toolkit.network.relay.validator import EngineRelayValidator
from rln_toolkit.protocol.snark.codec import WireCodec


def _pick_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.mark.network
@pytest.mark.trio
async def test_relay_network_roundtrip(prover_engine, verifier_engine, hasher, member) -> None:
    if os.environ.get("RUN_NETWORK_TESTS") != "1":
        pytest.skip("RUN_NETWORK_TESTS not set")
    pytest.importorskip("libp2p")
    from libp2p import new_host
    from libp2p.peer.peerinfo import info_from_p2p_addr
    from libp2p.tools.async_service import background_trio_service

    codec = WireCodec(hasher)
    host_a = new_host()
    host_b = new_host()
    register_rln_relay_protocol(host_b, EngineRelayValidator(verifier_engine, codec=codec))

    async with background_trio_service(host_a.get_network()):
        async with background_trio_service(host_b.get_network()):
            port_a = _pick_free_port()
            port_b = _pick_free_port()
            await host_a.get_network().listen(Multiaddr(f"/ip4/127.0.0.1/tcp/{port_a}"))
            await host_b.get_network().listen(Multiaddr(f"/ip4/127.0.0.1/tcp/{port_b}"))
            await trio.sleep(0.2)

            addr_b = Multiaddr(f"/ip4/127.0.0.1/tcp/{port_b}").encapsulate(
                Multiaddr(f"/p2p/{host_b.get_id()}")
            )
            peer_info = info_from_p2p_addr(addr_b)
            connected = False
            last_exc: Exception | None = None
            for _ in range(10):
                try:
                    await host_a.connect(peer_info)
                    connected = True
                    break
                except Exception as exc:  # pragma: no cover - retry path
                    last_exc = exc
                    await trio.sleep(0.2)
            if not connected:
                pytest.fail(f"connect failed: {last_exc}")

            first = prover_engine.create_proof(epoch=1, signal=b"one")
            response = await relay_signal(
                host_a, host_b.get_id(), build_request(first, b"one", codec)
            )
            assert response.ok is True
            assert response.status == STATUS_ADDED

            prover_engine.message_id_counter = None
            second = prover_engine.create_proof(epoch=1, signal=b"two")
            response = await relay_signal(
                host_a, host_b.get_id(), build_request(second, b"two", codec)
            )
            assert response.status == STATUS_BREACH
            assert response.secret == member.secret
