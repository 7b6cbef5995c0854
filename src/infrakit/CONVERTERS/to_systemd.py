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
Converters for generating systemd unit files from service definitions.

Service dependencies map onto the unit's ``After=`` and ``Requires=`` lines, so
systemd itself enforces the same order as the dependency resolver.
"""
import shlex
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from jinja2 import Environment, StrictUndefined

from ..MODELS.rendered_config import UnitFile
from ..MODELS.service_spec import ServiceSpec

UNIT_DIR = "etc/systemd/system"

SYSTEMD_TEMPLATE = """[Unit]
Description={{ unit.description }}
After={{ after | join(' ') }}
{% if requires %}
Requires={{ requires | join(' ') }}
{% endif %}
{% if unit.wants %}
Wants={{ unit.wants | join(' ') }}
{% endif %}
{% if unit.before %}
Before={{ unit.before | join(' ') }}
{% endif %}

[Service]
Type={{ unit.type }}
{% if unit.user %}
User={{ unit.user }}
{% endif %}
{% if unit.group %}
Group={{ unit.group }}
{% endif %}
{% if unit.working_dir %}
WorkingDirectory={{ unit.working_dir }}
{% endif %}
{% for path in unit.environment_files %}
EnvironmentFile={{ path }}
{% endfor %}
{% for k, v in unit.environment.items() %}
Environment={{ k }}={{ v }}
{% endfor %}
{% for cmd in unit.exec_start_pre %}
ExecStartPre={{ cmd }}
{% endfor %}
ExecStart={{ unit.exec_start }}
{% for cmd in unit.exec_start_post %}
ExecStartPost={{ cmd }}
{% endfor %}
{% if unit.exec_reload %}
ExecReload={{ unit.exec_reload }}
{% endif %}
{% if unit.remain_after_exit %}
RemainAfterExit=yes
{% endif %}
{% if unit.restart %}
Restart={{ unit.restart }}
RestartSec={{ unit.restart_sec }}
{% endif %}
{% for k, v in unit.hardening.items() %}
{{ k }}={{ v }}
{% endfor %}

[Install]
WantedBy=multi-user.target
"""

HARDENING = {
    "NoNewPrivileges": "true",
    "PrivateTmp": "true",
    "ProtectSystem": "strict",
    "ProtectHome": "true",
}


@dataclass
class UnitSpec:
    """
    Service-manager view of one process a service runs.
    """
    name: str
    description: str
    exec_start: str
    type: str = "simple"
    user: Optional[str] = None
    group: Optional[str] = None
    working_dir: Optional[str] = None
    environment: Dict[str, str] = field(default_factory=dict)
    environment_files: List[str] = field(default_factory=list)
    exec_start_pre: List[str] = field(default_factory=list)
    exec_start_post: List[str] = field(default_factory=list)
    exec_reload: Optional[str] = None
    restart: Optional[str] = "on-failure"
    restart_sec: str = "5s"
    remain_after_exit: bool = False
    after: List[str] = field(default_factory=list)
    requires: List[str] = field(default_factory=list)
    wants: List[str] = field(default_factory=list)
    before: List[str] = field(default_factory=list)
    hardening: Dict[str, str] = field(default_factory=dict)
    primary: bool = True


def unit_name(service_name: str) -> str:
    return f"{service_name}.service"


def shell_command(script: str) -> str:
    """
    Wraps a shell script for an Exec line. systemd turns $$ back into $.
    """
    return "/bin/sh -c " + shlex.quote(script).replace("$", "$$")


class SystemdConverter:
    """
    Renders UnitSpecs into systemd unit files.
    """

    def __init__(self):
        """
        Initializes the systemd converter.
        """
        env = Environment(trim_blocks=True, lstrip_blocks=True, keep_trailing_newline=True,
                          undefined=StrictUndefined, autoescape=False)
        self.template = env.from_string(SYSTEMD_TEMPLATE)

    def render_unit(self, spec: ServiceSpec, unit: UnitSpec) -> UnitFile:
        """
        Renders one unit of a service.

        Primary units order themselves after the primary units of every
        dependency of the service; companion units keep their own wiring.

        :param spec: The service the unit belongs to.
        :param unit: The unit description produced by the service's renderer.
        :return: The rendered unit file.
        """
        after = ["network.target"] + list(unit.after)
        requires = list(unit.requires)
        if unit.primary:
            for dep in spec.depends_on:
                dep_unit = unit_name(dep)
                if dep_unit not in after:
                    after.append(dep_unit)
                if dep_unit not in requires:
                    requires.append(dep_unit)

        content = self.template.render(unit=unit, after=after, requires=requires)
        return UnitFile(
            service=spec.name,
            path=f"{UNIT_DIR}/{unit.name}",
            content=content,
            unit=unit.name,
            primary=unit.primary,
        )

    def convert(self, spec: ServiceSpec, units: List[UnitSpec]) -> List[UnitFile]:
        """
        Renders every unit of a service, primary unit first.
        """
        ordered = sorted(units, key=lambda u: not u.primary)
        return [self.render_unit(spec, unit) for unit in ordered]
