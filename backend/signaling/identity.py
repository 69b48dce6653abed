"""
Peer identity helpers: ids, display names and locality keys.

Display names are a pure function of the peer id, so every member of a
room sees the same name for the same peer.
"""

import uuid

GREEK_NAMES = [
    "Alpha", "Beta", "Gamma", "Delta", "Epsilon", "Zeta",
    "Eta", "Theta", "Iota", "Kappa", "Lambda", "Mu",
    "Nu", "Xi", "Omicron", "Pi", "Rho", "Sigma",
    "Tau", "Upsilon", "Phi", "Chi", "Psi", "Omega",
    "Apollo", "Artemis", "Athena", "Ares", "Hermes", "Hera",
    "Zeus", "Poseidon", "Demeter", "Dionysus", "Hephaestus", "Aphrodite",
    "Hestia", "Hades", "Persephone", "Helios", "Selene", "Eos",
    "Nike", "Iris", "Gaia", "Kronos", "Rhea", "Atlas",
]

LOOPBACK_ADDRESSES = ("::1", "::ffff:127.0.0.1")


def new_peer_id() -> str:
    return str(uuid.uuid4())


def string_hash(value: str) -> int:
    """31-multiplier string hash, wrapped to a signed 32-bit integer."""
    h = 0
    for ch in value:
        h = (31 * h + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def display_name_for(peer_id: str) -> str:
    """Deterministic human-readable label for a peer id."""
    return GREEK_NAMES[abs(string_hash(peer_id)) % len(GREEK_NAMES)]


def normalize_address(address: str) -> str:
    address = address.strip()
    if address in LOOPBACK_ADDRESSES:
        return "127.0.0.1"
    return address


def locality_key(address: str) -> str:
    """
    Approximate "same LAN" by address prefix.

    IPv4 keeps the first three octets, IPv6 the first four groups.
    This is a grouping heuristic, not an access-control boundary.
    """
    address = normalize_address(address)
    if ":" in address:
        return ":".join(address.split(":")[:4])
    return ".".join(address.split(".")[:3])
