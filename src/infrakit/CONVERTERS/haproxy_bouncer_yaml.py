"""
Rendering of the CrowdSec HAProxy SPOA bouncer configuration.
"""
from typing import List, Tuple

from .crowdsec_yaml import dump_yaml, register_command
from .firewall_bouncer_yaml import check_env_name
from .to_systemd import UnitSpec


def config_path(o) -> str:
    return "etc/crowdsec/bouncers/crowdsec-haproxy-spoa-bouncer.yaml"


def render_config(o) -> str:
    return dump_yaml({
        "lapi_url": o["lapiUrl"],
        "lapi_key": "${%s}" % check_env_name(o),
        "action": o["action"],
        "log_level": o["logLevel"],
        "listen_addr": o["listenAddr"],
        "listen_port": o["listenPort"],
        "update_frequency": o["updateFrequency"],
    })


def companions(o) -> List[Tuple[str, str]]:
    return []


def units(name: str, o) -> List[UnitSpec]:
    env_file = f"/var/lib/{name}/api-key.env"
    return [UnitSpec(
        name=f"{name}.service",
        description="CrowdSec HAProxy SPOA Bouncer",
        exec_start=f"/usr/bin/cs-haproxy-spoa-bouncer -c /{config_path(o)}",
        exec_start_pre=[register_command(name, check_env_name(o), env_file)],
        environment_files=[f"-{env_file}"],
        restart="always",
        restart_sec="10s",
    )]


def check_command(path: str) -> List[str]:
    return []
