"""
Rendering of the CrowdSec engine configuration, log acquisitions, console
settings and auditd rules.
"""
import shlex
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .to_systemd import UnitSpec, shell_command

CONFIG_PATH = "etc/crowdsec/config.yaml"


def dump_yaml(data: Dict[str, Any]) -> str:
    """
    Dumps an explicitly ordered dict; key order is preserved as built.
    """
    return yaml.safe_dump(data, sort_keys=False, default_flow_style=False, allow_unicode=True)


def config_path(o) -> str:
    return CONFIG_PATH


def _dir(path: str) -> str:
    return path.rstrip("/")


def render_config(o) -> str:
    config_dir = _dir(o["configDir"])
    state_dir = _dir(o["stateDir"])

    server: Dict[str, Any] = {
        "listen_uri": f"{o['api.listenAddr']}:{o['api.listenPort']}",
        "profiles_path": f"{config_dir}/profiles.yaml",
    }
    if o["features.communityBlocklists"] or o["console.enrollKeyFile"]:
        server["online_client"] = {"credentials_path": f"{state_dir}/online_api_credentials.yaml"}
    if o["console.enrollKeyFile"]:
        server["console_path"] = f"{config_dir}/console.yaml"

    config = {
        "common": {
            "daemonize": False,
            "log_media": "stdout",
            "log_level": o["logLevel"],
        },
        "config_paths": {
            "config_dir": f"{config_dir}/",
            "data_dir": f"{state_dir}/data/",
            "hub_dir": f"{state_dir}/hub/",
            "index_path": f"{state_dir}/hub/.index.json",
        },
        "crowdsec_service": {
            "acquisition_path": f"{config_dir}/acquis.yaml",
        },
        "db_config": {
            "type": "sqlite",
            "db_path": f"{state_dir}/data/crowdsec.db",
        },
        "api": {
            "client": {"credentials_path": f"{state_dir}/local_api_credentials.yaml"},
            "server": server,
        },
    }
    return dump_yaml(config)


def acquisitions(o) -> List[Dict[str, Any]]:
    """
    Log sources enabled by the feature toggles, in a fixed order.
    """
    sources = []
    if o["features.sshProtection"]:
        sources.append({"source": "journalctl", "journalctl_filter": ["_SYSTEMD_UNIT=sshd.service"],
                        "labels": {"type": "syslog"}})
    if o["features.systemProtection"]:
        sources.append({"source": "journalctl", "journalctl_filter": ["_TRANSPORT=kernel"],
                        "labels": {"type": "syslog"}})
    if o["features.nginxProtection"]:
        sources.append({"filenames": ["/var/log/nginx/*.log"], "labels": {"type": "nginx"}})
    if o["auditd.enable"]:
        sources.append({"filenames": ["/var/log/audit/audit.log"], "labels": {"type": "auditd"}})
    return sources


def companions(o) -> List[Tuple[str, str]]:
    config_dir = _dir(o["configDir"]).lstrip("/")
    files = []
    sources = acquisitions(o)
    if sources:
        files.append((f"{config_dir}/acquis.yaml",
                      yaml.safe_dump_all(sources, sort_keys=False, default_flow_style=False)))
    if o["console.enrollKeyFile"]:
        share = o["console.shareDecisions"]
        files.append((f"{config_dir}/console.yaml", dump_yaml({
            "share_manual_decisions": share,
            "share_custom": share,
            "share_tainted": share,
            "share_context": False,
        })))
    if o["auditd.enable"] and o["auditd.rules"]:
        files.append(("etc/audit/rules.d/crowdsec.rules", "\n".join(o["auditd.rules"]) + "\n"))
    return files


def _enroll_command(o) -> Optional[str]:
    key_file = o["console.enrollKeyFile"]
    if not key_file:
        return None
    script = f"cscli -c /{CONFIG_PATH} console enroll --overwrite"
    if o["console.name"]:
        script += f" --name {shlex.quote(o['console.name'])}"
    for tag in o["console.tags"]:
        script += f" --tags {shlex.quote(tag)}"
    script += f' "$(cat {shlex.quote(key_file)})"'
    return shell_command(script)


def units(name: str, o) -> List[UnitSpec]:
    main = UnitSpec(
        name=f"{name}.service",
        description="CrowdSec agent and local API",
        exec_start=f"/usr/bin/crowdsec -c /{CONFIG_PATH}",
        exec_start_pre=[f"/usr/bin/crowdsec -c /{CONFIG_PATH} -t"],
        exec_reload="/bin/kill -HUP $MAINPID",
        restart="always",
        restart_sec="10s",
    )
    enroll = _enroll_command(o)
    if enroll:
        main.exec_start_post.append(enroll)
    if o["auditd.enable"]:
        main.after.append("auditd.service")
        main.wants.append("auditd.service")
    return [main]


def check_command(path: str) -> List[str]:
    return ["crowdsec", "-c", path, "-t"]


def register_command(bouncer: str, key_env: str, env_file: str) -> str:
    """
    Builds an ExecStartPre command that registers a bouncer with the local
    API once and stores its key as ``KEY_ENV=...`` in ``env_file``.
    """
    cscli = f"cscli -c /{CONFIG_PATH}"
    quoted_env_file = shlex.quote(env_file)
    script = (
        "set -e; "
        f"for i in $(seq 1 60); do {cscli} bouncers list >/dev/null 2>&1 && break; sleep 1; done; "
        f"if [ ! -s {quoted_env_file} ]; then "
        f"mkdir -p $(dirname {quoted_env_file}); "
        f"KEY=$({cscli} bouncers add {shlex.quote(bouncer)} -o raw); "
        f"umask 077; echo \"{key_env}=$KEY\" > {quoted_env_file}; "
        "fi"
    )
    return shell_command(script)
