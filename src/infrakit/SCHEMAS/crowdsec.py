"""
Option schema for the CrowdSec detection engine and its local API (service kind ``ids``).
"""
from typing import List

from ..MODELS.option_schema import OptionSchema, boolean, constraint, enum, list_of, port, string

LOG_LEVELS = ("error", "warning", "info", "debug", "trace")

OPTIONS = {
    "api.listenAddr": string("127.0.0.1", description="Listen address of the local API (LAPI)."),
    "api.listenPort": port(8080),
    "logLevel": enum(LOG_LEVELS, default="info"),
    "stateDir": string("/var/lib/crowdsec"),
    "configDir": string("/etc/crowdsec"),

    "features.sshProtection": boolean(True, "Acquire sshd logs from the journal."),
    "features.systemProtection": boolean(True, "Acquire kernel and syslog messages."),
    "features.nginxProtection": boolean(False, "Acquire nginx access and error logs."),
    "features.communityBlocklists": boolean(False, "Connect to the central API for community blocklists."),

    "console.enrollKeyFile": string(nullable=True, description="File holding the console enrollment key."),
    "console.shareDecisions": boolean(True),
    "console.name": string(nullable=True),
    "console.tags": list_of(string()),

    "auditd.enable": boolean(False, "Acquire kernel audit events."),
    "auditd.rules": list_of(string(), description="Audit rules, e.g. '-w /etc/passwd -p wa -k identity'."),
}


@constraint("auditd rules require auditd", "auditd.rules is set but auditd.enable is false",
            path="auditd.rules")
def _auditd_rules(o) -> bool:
    return o["auditd.enable"] or not o["auditd.rules"]


@constraint("console metadata requires an enrollment key",
            "console.name and console.tags need console.enrollKeyFile", path="console.enrollKeyFile")
def _console_enroll(o) -> bool:
    return bool(o["console.enrollKeyFile"]) or not (o["console.name"] or o["console.tags"])


SCHEMA = OptionSchema(
    kind="ids",
    options=OPTIONS,
    constraints=[_auditd_rules, _console_enroll],
)


def exposed_ports(o) -> List[int]:
    return [o["api.listenPort"]]
