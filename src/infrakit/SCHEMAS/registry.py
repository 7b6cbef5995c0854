"""
Lookup of option schemas by service kind.
"""
from typing import Dict, List

from ..MODELS.option_schema import OptionSchema
from ..MODELS.service_spec import ServiceKind
from ..errors import InvalidEnumValueError
from . import beiwe_backend, crowdsec, crowdsec_bouncers, haproxy, rabbitmq

_SCHEMAS: Dict[ServiceKind, OptionSchema] = {
    ServiceKind.PROXY: haproxy.SCHEMA,
    ServiceKind.IDS: crowdsec.SCHEMA,
    ServiceKind.FIREWALL_BOUNCER: crowdsec_bouncers.FIREWALL_SCHEMA,
    ServiceKind.HAPROXY_BOUNCER: crowdsec_bouncers.HAPROXY_SCHEMA,
    ServiceKind.QUEUE: rabbitmq.SCHEMA,
    ServiceKind.BACKEND: beiwe_backend.SCHEMA,
}

_PORTS = {
    ServiceKind.PROXY: haproxy.exposed_ports,
    ServiceKind.IDS: crowdsec.exposed_ports,
    ServiceKind.FIREWALL_BOUNCER: crowdsec_bouncers.firewall_exposed_ports,
    ServiceKind.HAPROXY_BOUNCER: crowdsec_bouncers.haproxy_exposed_ports,
    ServiceKind.QUEUE: rabbitmq.exposed_ports,
    ServiceKind.BACKEND: beiwe_backend.exposed_ports,
}


def to_kind(service_kind) -> ServiceKind:
    """
    Coerces a kind name to a ServiceKind.

    :raises InvalidEnumValueError: If the kind is not supported.
    """
    try:
        return ServiceKind(service_kind)
    except ValueError:
        raise InvalidEnumValueError("kind", service_kind, [k.value for k in ServiceKind]) from None


def get_schema(service_kind) -> OptionSchema:
    return _SCHEMAS[to_kind(service_kind)]


def exposed_ports(service_kind, options) -> List[int]:
    """
    Ports a service listens on, derived from its validated options.
    """
    return _PORTS[to_kind(service_kind)](options)
