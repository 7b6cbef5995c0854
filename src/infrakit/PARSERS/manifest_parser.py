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
Parser for deployment manifests.

A manifest is a compose-style YAML file::

    services:
      broker:
        kind: queue
        options:
          managementPlugin:
            enable: false
      web:
        kind: backend
        depends_on: [broker]
        options:
          celery.enable: true
        probes:
          - kind: http
            target: http://127.0.0.1:8080/
            expected_status: [200, 302]

    environments:
      production:
        services:
          web:
            options:
              domainName: beiwe.example.org

Services keep their declaration order. String values may use ``${VAR}``,
``${VAR:-default}`` and ``${VAR:+value}``; ``$$`` is a literal dollar.
"""
import os
from typing import Any, Dict, List, Mapping, Optional

import yaml
from dotenv import dotenv_values
from pydantic import ValidationError

from ..MODELS.service_spec import Deployment, ProbeKind, ProbeSpec, ServiceSpec
from ..SCHEMAS.registry import exposed_ports, to_kind
from ..UTILS.string_interpolation import EnvironmentInterpolator
from ..VALIDATORS.option_validator import merge_options, resolve
from ..errors import DuplicateServiceError, ManifestError

SERVICE_KEYS = {"kind", "options", "depends_on", "ports", "probes"}
WILDCARD_HOSTS = ("", "0.0.0.0", "::", "*")


def load_context(env_file: Optional[str] = None) -> Dict[str, str]:
    """
    Builds the interpolation context: the process environment overlaid with
    the variables of an optional dotenv file.
    """
    context = dict(os.environ)
    if env_file:
        if not os.path.isfile(env_file):
            raise ManifestError(f"environment file not found: {env_file}")
        context.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
    return context


def _check_duplicates(node: yaml.Node, top_level: bool = True):
    if isinstance(node, yaml.MappingNode):
        seen = set()
        for key_node, value_node in node.value:
            key = key_node.value if isinstance(key_node, yaml.ScalarNode) else None
            if key is not None:
                if key in seen:
                    raise ManifestError(
                        f"duplicate key '{key}' at line {key_node.start_mark.line + 1}")
                seen.add(key)
            if top_level and key == "services" and isinstance(value_node, yaml.MappingNode):
                names = set()
                for name_node, _ in value_node.value:
                    if name_node.value in names:
                        raise DuplicateServiceError(name_node.value)
                    names.add(name_node.value)
            _check_duplicates(value_node, top_level=False)
    elif isinstance(node, yaml.SequenceNode):
        for item in node.value:
            _check_duplicates(item, top_level=False)


def load_yaml(content: str) -> Any:
    """
    Loads a YAML document, rejecting duplicate keys that safe_load would
    silently collapse.
    """
    loader = yaml.SafeLoader(content)
    try:
        node = loader.get_single_node()
        if node is None:
            return None
        _check_duplicates(node)
        return loader.construct_document(node)
    except yaml.YAMLError as e:
        raise ManifestError(f"invalid YAML: {e}") from None
    finally:
        loader.dispose()


class ManifestParser:
    """
    Parser for deployment manifest files.
    """

    def __init__(self, context: Optional[Mapping[str, str]] = None, environment: Optional[str] = None):
        """
        Initializes the parser.

        :param context: Variables for interpolation; defaults to the process environment.
        :param environment: Name of the environment overlay to apply.
        """
        self.context = dict(context) if context is not None else dict(os.environ)
        self.environment = environment

    def parse(self, manifest_path: str) -> Deployment:
        """
        Parses a manifest file from a path.

        :raises ManifestError: If the file cannot be read or is malformed.
        """
        try:
            with open(manifest_path, 'r') as f:
                content = f.read()
        except OSError as e:
            raise ManifestError(f"cannot read manifest {manifest_path}: {e.strerror or e}") from None
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> Deployment:
        """
        Parses a manifest from a string.

        :param content: YAML content of the manifest.
        :return: The deployment with overlays merged and ports and probes derived.
        """
        data = load_yaml(content)
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ManifestError("manifest root must be a mapping")
        data = EnvironmentInterpolator.interpolate_tree(data, self.context)

        services = data.get("services")
        if not isinstance(services, dict) or not services:
            raise ManifestError("manifest must declare at least one service under 'services'")
        overlays = self._overlays(data, services)

        specs = []
        for name, spec in services.items():
            specs.append(self._parse_service(str(name), spec, overlays.get(name)))
        return Deployment(services=specs, environment=self.environment)

    def _overlays(self, data: Dict[str, Any], services: Dict[str, Any]) -> Dict[str, Any]:
        if not self.environment:
            return {}
        environments = data.get("environments") or {}
        if not isinstance(environments, dict) or self.environment not in environments:
            raise ManifestError(f"environment '{self.environment}' is not defined in the manifest")
        overlay = environments[self.environment] or {}
        overlay_services = overlay.get("services") or {} if isinstance(overlay, dict) else None
        if not isinstance(overlay_services, dict):
            raise ManifestError(f"environments.{self.environment}.services must be a mapping")

        result = {}
        for name, entry in overlay_services.items():
            if name not in services:
                raise ManifestError(
                    f"environment '{self.environment}' overrides undeclared service '{name}'")
            entry = entry or {}
            if not isinstance(entry, dict) or set(entry) - {"options"}:
                raise ManifestError(
                    f"environments.{self.environment}.services.{name} may only set 'options'")
            result[name] = entry.get("options") or {}
        return result

    def _parse_service(self, name: str, spec: Any, overlay: Optional[Mapping[str, Any]]) -> ServiceSpec:
        """
        Parses a single service entry of the manifest.

        :param name: The name of the service.
        :param spec: The service entry.
        :param overlay: Options of the active environment overlay, if any.
        :return: A ServiceSpec whose options are the merged option tree.
        """
        if not isinstance(spec, dict):
            raise ManifestError("service entry must be a mapping", name)
        unknown = sorted(set(spec) - SERVICE_KEYS)
        if unknown:
            raise ManifestError(f"unknown service keys: {', '.join(unknown)}", name)
        if "kind" not in spec:
            raise ManifestError("service has no 'kind'", name)

        kind = to_kind(spec["kind"])
        base = spec.get("options") or {}
        if not isinstance(base, dict):
            raise ManifestError("'options' must be a mapping", name)
        options = merge_options(kind, base, overlay)

        ports = spec.get("ports")
        probes = spec.get("probes")
        if ports is None or probes is None:
            validated = resolve(kind, options, service=name)
            if ports is None:
                ports = exposed_ports(kind, validated)
            if probes is None:
                host = validated.get("bindToIp", "127.0.0.1")
                if host in WILDCARD_HOSTS:
                    host = "127.0.0.1"
                probes = [{"kind": "port", "target": f"{host}:{p}"} for p in ports]

        try:
            return ServiceSpec(
                name=name,
                kind=kind,
                options=options,
                depends_on=self._to_list(spec.get("depends_on")),
                ports=ports,
                probes=[self._parse_probe(p) for p in self._to_list(probes)],
            )
        except ValidationError as e:
            raise ManifestError(f"invalid service entry: {_first_error(e)}", name) from None

    def _parse_probe(self, probe: Any) -> ProbeSpec:
        """
        Accepts a mapping or the ``kind:target`` shorthand, e.g. ``port:127.0.0.1:5672``.
        """
        if isinstance(probe, str):
            kind, sep, target = probe.partition(":")
            if not sep or kind not in [k.value for k in ProbeKind]:
                raise ManifestError(f"invalid probe shorthand '{probe}'")
            return ProbeSpec(kind=kind, target=target)
        if not isinstance(probe, dict):
            raise ManifestError(f"probe must be a mapping or 'kind:target', got {probe!r}")
        return ProbeSpec(**probe)

    def _to_list(self, val: Any) -> List[Any]:
        """
        Helper to ensure a value is a list; compose-style dict forms yield their keys.
        """
        if val is None:
            return []
        if isinstance(val, (str, int)):
            return [val]
        if isinstance(val, dict):
            return list(val.keys())
        return list(val)


def _first_error(error: ValidationError) -> str:
    err = error.errors()[0]
    location = ".".join(str(p) for p in err.get("loc", ()))
    return f"{location}: {err.get('msg')}" if location else str(err.get("msg"))
