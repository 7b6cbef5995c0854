# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Dispatch from service kinds to their pure template functions.

Every kind module exposes ``config_path``, ``render_config``, ``companions``,
``units`` and ``check_command``. Rendering never shells out; identical
validated options always produce byte-identical artefacts.
"""
from typing import Any, List, Mapping, Optional

from ..MODELS.option_schema import OptionDescriptor, OptionType
from ..MODELS.rendered_config import RenderedConfig
from ..MODELS.service_spec import ServiceKind, ServiceSpec
from ..SCHEMAS.registry import exposed_ports, get_schema, to_kind
from ..VALIDATORS.option_validator import ValidatedOptions, validate
from ..errors import RenderError
from . import (
    backend_env, crowdsec_yaml, firewall_bouncer_yaml, haproxy_bouncer_yaml, haproxy_cfg, open_ports,
    rabbitmq_conf,
)
from .to_systemd import SystemdConverter

_RENDERERS = {
    ServiceKind.PROXY: haproxy_cfg,
    ServiceKind.IDS: crowdsec_yaml,
    ServiceKind.FIREWALL_BOUNCER: firewall_bouncer_yaml,
    ServiceKind.HAPROXY_BOUNCER: haproxy_bouncer_yaml,
    ServiceKind.QUEUE: rabbitmq_conf,
    ServiceKind.BACKEND: backend_env,
}

_systemd = SystemdConverter()


def _bad_character(text: str, allowed: str = "") -> Optional[str]:
    for ch in text:
        if (ord(ch) < 32 or ord(ch) == 127) and ch not in allowed:
            return repr(ch)
    return None


def _check(path: str, desc: OptionDescriptor, value: Any, service: Optional[str]):
    if value is None:
        return
    if desc.type in (OptionType.STRING, OptionType.ENUM):
        bad = _bad_character(value)
        if bad:
            raise RenderError(path, f"single-line value contains control character {bad}", service)
    elif desc.type == OptionType.LINES:
        bad = _bad_character(value, allowed="\n\t")
        if bad:
            raise RenderError(path, f"value contains control character {bad}", service)
    elif desc.type == OptionType.LIST:
        for i, item in enumerate(value):
            _check(f"{path}[{i}]", desc.item, item, service)
    elif desc.type == OptionType.MAP:
        for key, item in value.items():
            bad = _bad_character(key)
            if bad or not key:
                raise RenderError(f"{path}.{key!r}", "map key must be a non-empty single line", service)
            _check(f"{path}.{key}", desc.item, item, service)
    elif desc.type == OptionType.RECORD:
        for name, field in desc.fields.items():
            _check(f"{path}.{name}", field, value[name], service)


def check_single_line(options: ValidatedOptions, service: Optional[str] = None):
    """
    Rejects control characters in single-line fields before templating.

    :param options: Validated options of one service.
    :param service: Service name used in the error message.
    :raises RenderError: Naming the service and the offending option path.
    """
    schema = get_schema(options.kind)
    for path, desc in schema.options.items():
        _check(path, desc, options[path], service or options.service)


def _ensure_validated(service_kind, options, service: Optional[str]) -> ValidatedOptions:
    if isinstance(options, ValidatedOptions):
        return options
    return validate(service_kind, options, service)


def render(service_kind, options: Mapping[str, Any], service: Optional[str] = None) -> RenderedConfig:
    """
    Renders the primary configuration file of a service kind.

    :param service_kind: ServiceKind or its string value.
    :param options: ValidatedOptions, or raw options which are validated first.
    :param service: Owning service name, defaults to the kind.
    :return: The rendered configuration file.
    :raises RenderError: If an option value cannot be rendered safely.
    """
    kind = to_kind(service_kind)
    validated = _ensure_validated(kind, options, service)
    owner = service or validated.service or kind.value
    check_single_line(validated, owner)
    module = _RENDERERS[kind]
    return RenderedConfig(service=owner, path=module.config_path(validated),
                          content=module.render_config(validated))


def render_service(spec: ServiceSpec, validated: Optional[ValidatedOptions] = None) -> List[RenderedConfig]:
    """
    Renders every artefact of a service: primary config, companion files, the
    open-port rules when ``openFirewall`` is set, and systemd units, in that order.
    """
    validated = _ensure_validated(spec.kind, validated if validated is not None else spec.options, spec.name)
    module = _RENDERERS[spec.kind]
    artefacts = [render(spec.kind, validated, spec.name)]
    for path, content in module.companions(validated):
        artefacts.append(RenderedConfig(service=spec.name, path=path, content=content))
    if opens_firewall(validated):
        ports = exposed_ports(spec.kind, validated)
        if ports:
            artefacts.append(RenderedConfig(
                service=spec.name,
                path=open_ports.rules_path(spec.name),
                content=open_ports.render_rules(spec.name, spec.kind.value, ports),
            ))
    artefacts.extend(_systemd.convert(spec, module.units(spec.name, validated)))
    return artefacts


def opens_firewall(options: ValidatedOptions) -> bool:
    return "openFirewall" in get_schema(options.kind).options and options["openFirewall"]


def check_command(service_kind, path: str) -> List[str]:
    """
    Command that makes the wrapped daemon validate a rendered config file,
    or an empty list when the daemon has no such mode.
    """
    return _RENDERERS[to_kind(service_kind)].check_command(path)
