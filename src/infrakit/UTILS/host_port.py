"""
Parsing of ``host:port`` probe targets.
"""
from typing import Tuple


def parse_host_port(target: str, default_host: str = "127.0.0.1") -> Tuple[str, int]:
    """
    Splits ``host:port``, ``[v6]:port`` or a bare ``port`` into its parts.

    :raises ValueError: If the port is missing or out of range.
    """
    host, sep, port = target.strip().rpartition(":")
    if not sep:
        host = default_host
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    if not port.isdigit() or not 1 <= int(port) <= 65535:
        raise ValueError(f"invalid port in target '{target}'")
    return host or default_host, int(port)
