"""
idgen_sdk.tier1_runtime.nodeid
───────────────────────────────
Node id resolution for the time-based generator. An explicit id is checked
against the layout; without one, the low 16 bits of the host's private IPv4
address are used, which is unique per host inside one private network.
"""
from __future__ import annotations

import ipaddress
import socket

from idgen_sdk.tier0_core.errors import ValidationError
from idgen_sdk.tier0_core.logging import get_logger
from idgen_sdk.tier1_runtime.snowflake import BitLayout

log = get_logger(__name__)

_PRIVATE_V4_NETWORKS = (
    ipaddress.IPv4Network("10.0.0.0/8"),
    ipaddress.IPv4Network("172.16.0.0/12"),
    ipaddress.IPv4Network("192.168.0.0/16"),
)


def _host_ipv4_addresses() -> list[str]:
    try:
        infos = socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET)
    except OSError:
        return []
    return [info[4][0] for info in infos]


def private_ipv4_node_id() -> int:
    """Low 16 bits of the first private, non-loopback IPv4 address; 0 if none."""
    for raw in _host_ipv4_addresses():
        addr = ipaddress.IPv4Address(raw)
        if addr.is_loopback:
            continue
        if any(addr in net for net in _PRIVATE_V4_NETWORKS):
            return int(addr) & 0xFFFF
    return 0


def resolve_node_id(node_id: int | None, layout: BitLayout) -> int:
    """
    Return the node id to run with.

    Raises:
        ValidationError: an explicit node id is negative or wider than the node field.
    """
    if node_id is not None:
        if not 0 <= node_id <= layout.max_node_id:
            raise ValidationError(
                user_message="Node id does not fit the layout.",
                fields={"node_id": f"must be within [0, {layout.max_node_id}], got {node_id}"},
            )
        return node_id

    derived = private_ipv4_node_id() & layout.max_node_id
    log.info("idgen.node_id.derived", node_id=derived, node_bits=layout.node_bits)
    return derived


__all__ = ["private_ipv4_node_id", "resolve_node_id"]
