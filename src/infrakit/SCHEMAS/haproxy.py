"""
Option schema for the HAProxy load balancer (service kind ``proxy``).
"""
from typing import List

from ..MODELS.option_schema import (
    OptionSchema, boolean, constraint, enum, integer, lines, list_of, map_of, record, string,
)

DEFAULT_GLOBAL_CONFIG = """global
  log /dev/log local0
  log /dev/log local1 notice
  maxconn 4096
  # Modern SSL settings
  ssl-default-bind-ciphersuites TLS_AES_128_GCM_SHA256:TLS_AES_256_GCM_SHA384:TLS_CHACHA20_POLY1305_SHA256
  ssl-default-bind-options prefer-client-ciphers no-sslv3 no-tlsv10 no-tlsv11
  ssl-default-server-ciphersuites TLS_AES_128_GCM_SHA256:TLS_AES_256_GCM_SHA384:TLS_CHACHA20_POLY1305_SHA256
  ssl-default-server-options no-sslv3 no-tlsv10 no-tlsv11
  tune.ssl.default-dh-param 2048
"""

DEFAULT_DEFAULTS_CONFIG = """defaults
  log global
  mode http
  option httplog
  option dontlognull
  option forwardfor
  option http-server-close
  timeout connect 5s
  timeout client 50s
  timeout server 50s
  timeout http-request 10s
  timeout http-keep-alive 10s
  errorfile 400 /dev/null
  errorfile 403 /dev/null
  errorfile 408 /dev/null
  errorfile 500 /dev/null
  errorfile 502 /dev/null
  errorfile 503 /dev/null
  errorfile 504 /dev/null
"""

MODES = ("http", "tcp")

FRONTEND = record({
    "bind": list_of(string(), description="Bind addresses and ports, e.g. '*:443 ssl crt /path.pem'."),
    "mode": enum(MODES, default="http"),
    "options": list_of(string()),
    "acls": list_of(string()),
    "httpRequest": list_of(string(), description="http-request rules."),
    "useBackend": list_of(string(), description="use_backend rules, e.g. 'api if is_api'."),
    "defaultBackend": string(nullable=True),
    "extraConfig": lines(),
})

BACKEND = record({
    "mode": enum(MODES, default="http"),
    "balance": string("roundrobin"),
    "options": list_of(string()),
    "httpRequest": list_of(string()),
    "httpResponse": list_of(string()),
    "servers": list_of(string(), description="Server lines, e.g. 'web1 127.0.0.1:8080 check'."),
    "extraConfig": lines(),
})

LISTEN = record({
    "bind": list_of(string()),
    "mode": enum(MODES, default="http"),
    "balance": string(nullable=True),
    "options": list_of(string()),
    "servers": list_of(string()),
    "extraConfig": lines(),
})

ACME_DOMAIN = record({
    "extraDomainNames": list_of(string(), description="Additional SANs for this certificate."),
    "webroot": string("/var/lib/acme/acme-challenge", nullable=True),
})

OPTIONS = {
    "openFirewall": boolean(True, "Accept TCP on the ports bound by frontends and listen sections."),
    "user": string("haproxy"),
    "group": string("haproxy"),

    "acme.enable": boolean(False, "Manage certificates through ACME (Let's Encrypt)."),
    "acme.acceptTerms": boolean(False, "Accept the ACME provider's terms of service."),
    "acme.email": string(nullable=True, description="Registration and renewal notification address."),
    "acme.staging": boolean(False, "Use the Let's Encrypt staging directory."),
    "acme.domains": map_of(ACME_DOMAIN, description="Certificates keyed by primary domain."),

    "selfSigned.enable": boolean(False, "Generate self-signed certificates before start."),
    "selfSigned.domains": list_of(string(), default=["localhost"]),
    "selfSigned.days": integer(365),
    "selfSigned.certDir": string("/var/lib/haproxy/certs"),

    "globalConfig": lines(DEFAULT_GLOBAL_CONFIG),
    "defaultsConfig": lines(DEFAULT_DEFAULTS_CONFIG),
    "frontends": map_of(FRONTEND),
    "backends": map_of(BACKEND),
    "listen": map_of(LISTEN, description="Combined frontend/backend sections."),
    "extraConfig": lines(description="Appended verbatim to the end of the file."),
}


@constraint("ACME and self-signed TLS are mutually exclusive",
            "acme.enable and selfSigned.enable cannot both be true", path="acme.enable")
def _exclusive_tls(o) -> bool:
    return not (o["acme.enable"] and o["selfSigned.enable"])


@constraint("ACME requires email", "acme.email must be set when acme.enable is true",
            path="acme.email")
def _acme_email(o) -> bool:
    return not o["acme.enable"] or bool(o["acme.email"])


@constraint("ACME requires terms acceptance",
            "acme.acceptTerms must be true when acme.enable is true", path="acme.acceptTerms")
def _acme_terms(o) -> bool:
    return not o["acme.enable"] or o["acme.acceptTerms"]


@constraint("self-signed TLS requires a domain",
            "selfSigned.domains must not be empty when selfSigned.enable is true",
            path="selfSigned.domains")
def _self_signed_domains(o) -> bool:
    return not o["selfSigned.enable"] or bool(o["selfSigned.domains"])


def referenced_backends(o) -> List[str]:
    """
    Backend names referenced by frontend default_backend and use_backend rules.
    """
    names = []
    for frontend in o["frontends"].values():
        if frontend["defaultBackend"]:
            names.append(frontend["defaultBackend"])
        for rule in frontend["useBackend"]:
            if rule.split():
                names.append(rule.split()[0])
    return names


@constraint("frontend backends must be declared",
            "default_backend and use_backend must name a declared backend or listen section",
            path="frontends")
def _declared_backends(o) -> bool:
    declared = set(o["backends"]) | set(o["listen"])
    return all(name in declared for name in referenced_backends(o))


SCHEMA = OptionSchema(
    kind="proxy",
    options=OPTIONS,
    constraints=[_exclusive_tls, _acme_email, _acme_terms, _self_signed_domains, _declared_backends],
)


def _bind_port(bind: str):
    address = bind.split()[0] if bind.split() else ""
    _, _, port = address.rpartition(":")
    return int(port) if port.isdigit() else None


def exposed_ports(o) -> List[int]:
    """
    Ports bound by frontends and listen sections, in section order.
    """
    ports: List[int] = []
    sections = [o["frontends"][n] for n in sorted(o["frontends"])]
    sections += [o["listen"][n] for n in sorted(o["listen"])]
    for section in sections:
        for bind in section["bind"]:
            port = _bind_port(bind)
            if port and port not in ports:
                ports.append(port)
    return ports
