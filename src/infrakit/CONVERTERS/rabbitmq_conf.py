"""
Rendering of rabbitmq.conf (sysctl-style ``key = value``) and the
``enabled_plugins`` Erlang term file.
"""
import re
from typing import Dict, List, Tuple

from ..errors import RenderError
from .to_systemd import UnitSpec

CONFIG_PATH = "etc/rabbitmq/rabbitmq.conf"
PLUGINS_PATH = "etc/rabbitmq/enabled_plugins"

PLUGIN_NAME = re.compile(r"^[a-z][a-z0-9_]*$")


def config_path(o) -> str:
    return CONFIG_PATH


def settings(o) -> Dict[str, str]:
    """
    Built-in settings first, then configItems: an item naming a built-in key
    replaces it in place, new keys follow in sorted order.
    """
    values = {
        "listeners.tcp.1": f"{o['bindToIp']}:{o['bindToPort']}",
    }
    if o["managementPlugin.enable"]:
        values["management.tcp.port"] = str(o["managementPlugin.port"])
        values["management.tcp.ip"] = o["bindToIp"]
    items = o["configItems"]
    for key in sorted(items):
        values[key] = items[key]
    return values


def render_config(o) -> str:
    return "".join(f"{key} = {value}\n" for key, value in settings(o).items())


def plugins(o) -> List[str]:
    names = []
    if o["managementPlugin.enable"]:
        names.append("rabbitmq_management")
    for name in o["plugins"]:
        if not PLUGIN_NAME.match(name):
            raise RenderError("plugins", f"{name!r} is not a valid plugin name", o.service)
        if name not in names:
            names.append(name)
    return names


def companions(o) -> List[Tuple[str, str]]:
    names = plugins(o)
    if not names:
        return []
    return [(PLUGINS_PATH, f"[{','.join(names)}].\n")]


def units(name: str, o) -> List[UnitSpec]:
    environment = {"RABBITMQ_CONFIG_FILE": f"/{CONFIG_PATH}"}
    if plugins(o):
        environment["RABBITMQ_ENABLED_PLUGINS_FILE"] = f"/{PLUGINS_PATH}"
    return [UnitSpec(
        name=f"{name}.service",
        description="RabbitMQ broker",
        type="notify",
        user="rabbitmq",
        group="rabbitmq",
        working_dir="/var/lib/rabbitmq",
        environment=environment,
        exec_start="/usr/sbin/rabbitmq-server",
        restart="on-failure",
        restart_sec="10s",
    )]


def check_command(path: str) -> List[str]:
    return []
