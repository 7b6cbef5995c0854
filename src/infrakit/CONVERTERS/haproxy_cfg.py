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
Rendering of HAProxy configuration files and the units that run HAProxy.
"""
import shlex
from typing import List, Tuple

from jinja2 import Environment, StrictUndefined

from .to_systemd import UnitSpec, shell_command

CONFIG_PATH = "etc/haproxy/haproxy.cfg"
ACME_DIR = "/var/lib/acme"
ACME_DIRECTORY_STAGING = "https://acme-staging-v02.api.letsencrypt.org/directory"

HAPROXY_TEMPLATE = """{{ global_config }}

{{ defaults_config }}
{% for name, fe in frontends %}

frontend {{ name }}
{% for b in fe.bind %}
  bind {{ b }}
{% endfor %}
  mode {{ fe.mode }}
{% for o in fe.options %}
  option {{ o }}
{% endfor %}
{% for a in fe.acls %}
  acl {{ a }}
{% endfor %}
{% for r in fe.httpRequest %}
  http-request {{ r }}
{% endfor %}
{% for u in fe.useBackend %}
  use_backend {{ u }}
{% endfor %}
{% if fe.defaultBackend %}
  default_backend {{ fe.defaultBackend }}
{% endif %}
{% if fe.extraConfig %}
{{ fe.extraConfig | block }}
{% endif %}
{% endfor %}
{% for name, be in backends %}

backend {{ name }}
  mode {{ be.mode }}
  balance {{ be.balance }}
{% for o in be.options %}
  option {{ o }}
{% endfor %}
{% for r in be.httpRequest %}
  http-request {{ r }}
{% endfor %}
{% for r in be.httpResponse %}
  http-response {{ r }}
{% endfor %}
{% for s in be.servers %}
  server {{ s }}
{% endfor %}
{% if be.extraConfig %}
{{ be.extraConfig | block }}
{% endif %}
{% endfor %}
{% for name, ls in listen %}

listen {{ name }}
{% for b in ls.bind %}
  bind {{ b }}
{% endfor %}
  mode {{ ls.mode }}
{% if ls.balance %}
  balance {{ ls.balance }}
{% endif %}
{% for o in ls.options %}
  option {{ o }}
{% endfor %}
{% for s in ls.servers %}
  server {{ s }}
{% endfor %}
{% if ls.extraConfig %}
{{ ls.extraConfig | block }}
{% endif %}
{% endfor %}
{% if extra_config %}

{{ extra_config }}
{% endif %}
"""


def _block(text: str, indent: int = 2) -> str:
    """
    Indents a multi-line section body, dropping blank lines and trailing spaces.
    """
    pad = " " * indent
    return "\n".join(pad + line.strip() for line in text.splitlines() if line.strip())


_env = Environment(trim_blocks=True, lstrip_blocks=True, keep_trailing_newline=True,
                   undefined=StrictUndefined, autoescape=False)
_env.filters["block"] = _block
_template = _env.from_string(HAPROXY_TEMPLATE)


def _sorted_items(mapping) -> List[Tuple[str, dict]]:
    return [(name, mapping[name]) for name in sorted(mapping)]


def config_path(o) -> str:
    return CONFIG_PATH


def render_config(o) -> str:
    """
    Renders haproxy.cfg. Sections appear as global, defaults, frontends,
    backends, listen, extra; sections of one type are sorted by name.
    """
    return _template.render(
        global_config=o["globalConfig"].strip(),
        defaults_config=o["defaultsConfig"].strip(),
        frontends=_sorted_items(o["frontends"]),
        backends=_sorted_items(o["backends"]),
        listen=_sorted_items(o["listen"]),
        extra_config=o["extraConfig"].strip(),
    )


def companions(o) -> List[Tuple[str, str]]:
    return []


def _self_signed_command(o, domain: str) -> str:
    cert_dir = o["selfSigned.certDir"]
    pem = f"{cert_dir}/{domain}.pem"
    script = (
        f"mkdir -p {shlex.quote(cert_dir)} && "
        f"test -s {shlex.quote(pem)} || "
        f"(openssl req -x509 -newkey rsa:2048 -nodes -days {o['selfSigned.days']} "
        f"-subj {shlex.quote('/CN=' + domain)} "
        f"-keyout {shlex.quote(pem + '.key')} -out {shlex.quote(pem + '.crt')} && "
        f"cat {shlex.quote(pem + '.crt')} {shlex.quote(pem + '.key')} > {shlex.quote(pem)} && "
        f"chmod 640 {shlex.quote(pem)} && "
        f"chgrp {shlex.quote(o['group'])} {shlex.quote(pem)})"
    )
    return shell_command(script)


def combined_pem_path(domain: str) -> str:
    """
    Certificate chain and key in the single file HAProxy's ``crt`` expects.
    """
    return f"{ACME_DIR}/{domain}/combined.pem"


def _acme_command(o, domain: str, entry) -> str:
    live = f"{ACME_DIR}/letsencrypt/live/{domain}"
    certbot = [
        "certbot", "certonly", "--non-interactive", "--agree-tos",
        "--email", o["acme.email"],
        "--config-dir", f"{ACME_DIR}/letsencrypt",
        "--cert-name", domain,
        "--keep-until-expiring",
    ]
    if o["acme.staging"]:
        certbot += ["--server", ACME_DIRECTORY_STAGING]
    if entry["webroot"]:
        certbot += ["--webroot", "-w", entry["webroot"]]
    else:
        certbot += ["--standalone"]
    for name in [domain] + list(entry["extraDomainNames"]):
        certbot += ["-d", name]

    pem = combined_pem_path(domain)
    script = (
        " ".join(shlex.quote(arg) for arg in certbot) + " && "
        f"mkdir -p {shlex.quote(f'{ACME_DIR}/{domain}')} && "
        f"cat {shlex.quote(live + '/fullchain.pem')} {shlex.quote(live + '/privkey.pem')} "
        f"> {shlex.quote(pem)} && "
        f"chmod 640 {shlex.quote(pem)} && "
        f"chgrp {shlex.quote(o['group'])} {shlex.quote(pem)}"
    )
    return shell_command(script)


def units(name: str, o) -> List[UnitSpec]:
    """
    The HAProxy unit, run as the configured user and group. Self-signed
    certificates are generated before it starts; ACME certificates are requested
    once it runs, so it can answer the challenge. Both are readable by the group.
    """
    main = UnitSpec(
        name=f"{name}.service",
        description="HAProxy Load Balancer",
        exec_start=f"/usr/sbin/haproxy -Ws -f /{CONFIG_PATH}",
        exec_start_pre=[f"/usr/sbin/haproxy -c -q -f /{CONFIG_PATH}"],
        exec_reload="/bin/kill -USR2 $MAINPID",
        type="notify",
        restart="always",
        user=o["user"],
        group=o["group"],
        hardening={"AmbientCapabilities": "CAP_NET_BIND_SERVICE"},
    )
    result = [main]

    if o["selfSigned.enable"]:
        domains = list(o["selfSigned.domains"])
        cert_unit = f"{name}-generate-self-signed.service"
        result.append(UnitSpec(
            name=cert_unit,
            description="Generate self-signed certificates for HAProxy",
            type="oneshot",
            exec_start=_self_signed_command(o, domains[0]),
            exec_start_post=[_self_signed_command(o, d) for d in domains[1:]],
            remain_after_exit=True,
            restart=None,
            before=[main.name],
            primary=False,
        ))
        main.after.append(cert_unit)
        main.requires.append(cert_unit)

    if o["acme.enable"]:
        for domain in sorted(o["acme.domains"]):
            entry = o["acme.domains"][domain]
            pre = []
            if entry["webroot"]:
                pre.append(f"/bin/mkdir -p {entry['webroot']}/.well-known/acme-challenge")
            result.append(UnitSpec(
                name=f"{name}-acme-{domain}.service",
                description=f"Obtain the ACME certificate for {domain}",
                type="oneshot",
                exec_start_pre=pre,
                exec_start=_acme_command(o, domain, entry),
                exec_start_post=[f"-/bin/systemctl reload {main.name}"],
                remain_after_exit=True,
                restart=None,
                after=[main.name],
                primary=False,
            ))
            main.wants.append(f"{name}-acme-{domain}.service")

    return result


def check_command(path: str) -> List[str]:
    return ["haproxy", "-c", "-f", path]
