"""
Rendering of the CrowdSec firewall bouncer configuration and, in nftables
mode, the tables it manages set membership in.
"""
import re
from typing import Any, Dict, List, Tuple

from ..errors import RenderError
from .crowdsec_yaml import dump_yaml, register_command
from .to_systemd import UnitSpec

ENV_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

NFTABLES_PATH = "etc/nftables.d/crowdsec.nft"

NFT_TABLE = """table {family} {table}
delete table {family} {table}
table {family} {table} {{
  set {table}-blocklist {{
    type {addr_type}
    flags timeout
    timeout {timeout}
  }}

  chain {table}-chain {{
    type filter hook input priority -1; policy accept;
{rules}
  }}
}}
"""


def _state_dir(name: str) -> str:
    return f"var/lib/{name}"


def check_env_name(o, path: str = "apiKeyEnv") -> str:
    value = o[path]
    if not ENV_NAME.match(value):
        raise RenderError(path, f"{value!r} is not a valid environment variable name", o.service)
    return value


def uses_nftables_integration(o) -> bool:
    return o["mode"] == "nftables" and o["nftablesIntegration"]


def config_path(o) -> str:
    return "etc/crowdsec/bouncers/crowdsec-firewall-bouncer.yaml"


def render_config(o) -> str:
    key_env = check_env_name(o)
    config: Dict[str, Any] = {
        "mode": o["mode"],
        "update_frequency": o["updateFrequency"],
        "api_url": o["apiUrl"],
        "api_key": "${%s}" % key_env,
        "disable_ipv6": o["disableIpv6"],
        "deny_action": o["denyAction"],
        "deny_log": o["denyLog"],
        "deny_log_prefix": o["denyLogPrefix"],
    }
    if o["mode"] == "nftables":
        set_only = uses_nftables_integration(o)
        config["nftables"] = {
            "ipv4": {"enabled": True, "set-only": set_only, "table": "crowdsec",
                     "chain": "crowdsec-chain", "set": "crowdsec-blocklist"},
            "ipv6": {"enabled": not o["disableIpv6"], "set-only": set_only, "table": "crowdsec6",
                     "chain": "crowdsec6-chain", "set": "crowdsec6-blocklist"},
        }
    elif o["mode"] == "iptables":
        config["iptables_chains"] = ["INPUT", "FORWARD"]
    else:
        config["ipset_type"] = "nethash"
        config["ipset"] = "crowdsec-blocklist"
        config["ipset6"] = "crowdsec6-blocklist"
    return dump_yaml(config)


def _nft_table(o, family: str, table: str, addr_type: str, match: str) -> str:
    action = o["denyAction"].lower()
    rules = []
    if o["denyLog"]:
        rules.append(f'    {match} saddr @{table}-blocklist log prefix "{o["denyLogPrefix"]}"')
    rules.append(f"    {match} saddr @{table}-blocklist {action}")
    return NFT_TABLE.format(family=family, table=table, addr_type=addr_type,
                            timeout=o["banDuration"], rules="\n".join(rules))


def render_nftables(o) -> str:
    if '"' in o["denyLogPrefix"]:
        raise RenderError("denyLogPrefix", "must not contain double quotes", o.service)
    tables = [_nft_table(o, "ip", "crowdsec", "ipv4_addr", "ip")]
    if not o["disableIpv6"]:
        tables.append(_nft_table(o, "ip6", "crowdsec6", "ipv6_addr", "ip6"))
    return "\n".join(tables)


def companions(o) -> List[Tuple[str, str]]:
    if uses_nftables_integration(o):
        return [(NFTABLES_PATH, render_nftables(o))]
    return []


def units(name: str, o) -> List[UnitSpec]:
    key_env = check_env_name(o)
    env_file = f"/{_state_dir(name)}/api-key.env"
    main = UnitSpec(
        name=f"{name}.service",
        description="CrowdSec Firewall Bouncer",
        exec_start=f"/usr/bin/cs-firewall-bouncer -c /{config_path(o)}",
        exec_start_pre=[register_command(name, key_env, env_file)],
        environment_files=[f"-{env_file}"],
        restart="always",
        restart_sec="10s",
    )
    if uses_nftables_integration(o):
        main.exec_start_pre.insert(0, f"/usr/sbin/nft -f /{NFTABLES_PATH}")
    return [main]


def check_command(path: str) -> List[str]:
    return []
