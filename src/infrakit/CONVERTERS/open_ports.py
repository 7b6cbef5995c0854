"""
Input-chain rules for services that open their listening ports.

The host firewall includes ``/etc/nftables.d/input/*.nft`` from its input
chain, so each file holds bare rule statements rather than a table.
"""
from typing import Iterable

INPUT_RULES_DIR = "etc/nftables.d/input"


def rules_path(name: str) -> str:
    return f"{INPUT_RULES_DIR}/{name}.nft"


def render_rules(name: str, kind: str, ports: Iterable[int]) -> str:
    ports = ", ".join(str(p) for p in ports)
    return f"# {name} ({kind})\ntcp dport {{ {ports} }} accept\n"
