"""
Option schemas for the CrowdSec bouncers: the firewall bouncer applying
decisions to iptables/nftables/ipset and the HAProxy SPOA bouncer.
"""
import re
from typing import List

from ..MODELS.option_schema import OptionSchema, boolean, constraint, enum, port, string

# Go style durations, plus days as accepted by nftables timeouts.
DURATION = re.compile(r"^(\d+(\.\d+)?(ms|s|m|h|d))+$")

FIREWALL_OPTIONS = {
    "mode": enum(("iptables", "nftables", "ipset"), default="nftables"),
    "nftablesIntegration": boolean(
        True, "In nftables mode, declare the tables ourselves and run the bouncer set-only."),
    "denyAction": enum(("DROP", "REJECT"), default="DROP"),
    "denyLog": boolean(True),
    "denyLogPrefix": string("crowdsec: "),
    "banDuration": string("4h", description="Default timeout of blocklist entries."),
    "updateFrequency": string("10s"),
    "apiUrl": string("http://127.0.0.1:8080/", description="CrowdSec LAPI URL."),
    "apiKeyEnv": string("BOUNCER_API_KEY", description="Environment variable holding the API key."),
    "disableIpv6": boolean(False),
}


@constraint("ban duration is a duration", "banDuration must look like '4h' or '30m'",
            path="banDuration")
def _ban_duration(o) -> bool:
    return bool(DURATION.match(o["banDuration"]))


@constraint("update frequency is a duration", "updateFrequency must look like '10s'",
            path="updateFrequency")
def _firewall_frequency(o) -> bool:
    return bool(DURATION.match(o["updateFrequency"]))


FIREWALL_SCHEMA = OptionSchema(
    kind="firewall-bouncer",
    options=FIREWALL_OPTIONS,
    constraints=[_ban_duration, _firewall_frequency],
)


HAPROXY_OPTIONS = {
    "listenAddr": string("127.0.0.1", description="Address HAProxy connects to for SPOA checks."),
    "listenPort": port(3000),
    "action": enum(("deny", "tarpit"), default="deny"),
    "logLevel": enum(("error", "warning", "info", "debug"), default="info"),
    "lapiUrl": string("http://127.0.0.1:8080"),
    "apiKeyEnv": string("HAPROXY_SPOA_API_KEY"),
    "updateFrequency": string("10s"),
}


@constraint("update frequency is a duration", "updateFrequency must look like '10s'",
            path="updateFrequency")
def _spoa_frequency(o) -> bool:
    return bool(DURATION.match(o["updateFrequency"]))


HAPROXY_SCHEMA = OptionSchema(
    kind="haproxy-bouncer",
    options=HAPROXY_OPTIONS,
    constraints=[_spoa_frequency],
)


def firewall_exposed_ports(o) -> List[int]:
    return []


def haproxy_exposed_ports(o) -> List[int]:
    return [o["listenPort"]]
