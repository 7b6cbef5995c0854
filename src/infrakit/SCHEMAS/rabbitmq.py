"""
Option schema for the RabbitMQ broker (service kind ``queue``).
"""
from typing import List

from ..MODELS.option_schema import OptionSchema, boolean, constraint, list_of, map_of, port, string

OPTIONS = {
    "bindToIp": string("127.0.0.1"),
    "bindToPort": port(5672, description="AMQP port."),
    "managementPlugin.enable": boolean(True, "Enable the management web UI and HTTP API."),
    "managementPlugin.port": port(15672),
    "plugins": list_of(string(), description="Additional plugins, e.g. rabbitmq_shovel."),
    "configItems": map_of(string(), description="Extra rabbitmq.conf entries."),
    "openFirewall": boolean(False),
}


@constraint("management port differs from AMQP port",
            "managementPlugin.port must not equal bindToPort", path="managementPlugin.port")
def _distinct_ports(o) -> bool:
    return not o["managementPlugin.enable"] or o["managementPlugin.port"] != o["bindToPort"]


SCHEMA = OptionSchema(kind="queue", options=OPTIONS, constraints=[_distinct_ports])


def exposed_ports(o) -> List[int]:
    ports = [o["bindToPort"]]
    if o["managementPlugin.enable"]:
        ports.append(o["managementPlugin.port"])
    return ports
