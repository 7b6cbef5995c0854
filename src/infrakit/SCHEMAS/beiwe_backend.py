"""
Option schema for the Beiwe research backend (service kind ``backend``): a
Django application served by gunicorn with optional celery worker and beat.
"""
from typing import List

from ..MODELS.option_schema import (
    OptionSchema, boolean, constraint, enum, integer, list_of, map_of, port, string,
)

SSL_MODES = ("disable", "allow", "prefer", "require", "verify-ca", "verify-full")
CELERY_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
CELERY_QUEUES = ["celery", "data_processing", "push_notifications", "forest"]

OPTIONS = {
    "version": string("93be878", description="Git revision of the installed backend."),
    "packageDir": string("/opt/beiwe-backend", description="Install prefix holding bin/ and lib/."),
    "user": string("beiwe"),
    "group": string("beiwe"),
    "bindToIp": string("127.0.0.1"),
    "bindToPort": port(8080),
    "openFirewall": boolean(False),
    "domainName": string("localhost:8080"),
    "flaskSecretKey": string("CHANGE_ME_IN_PRODUCTION_use_a_random_string"),
    "sysadminEmails": string("sysadmin@localhost", description="Comma separated."),
    "dataDir": string("/var/lib/beiwe-backend"),

    "database.host": string("/run/postgresql"),
    "database.port": port(5432),
    "database.name": string("beiwe"),
    "database.user": string("beiwe"),
    "database.password": string("unused_with_trust_auth"),
    "database.passwordSecretName": string(nullable=True,
                                          description="Secret under /run/secrets loaded as an environment file."),
    "database.sslmode": enum(SSL_MODES, default="prefer"),

    "s3.bucket": string("beiwe-data"),
    "s3.accessKeyId": string(""),
    "s3.secretAccessKey": string(""),
    "s3.endpoint": string("", description="S3 compatible endpoint, empty for AWS."),

    "sentry.dsn": string(""),

    "celery.enable": boolean(False),
    "celery.rabbitmq.host": string("127.0.0.1"),
    "celery.rabbitmq.port": port(5672),
    "celery.rabbitmq.user": string("guest"),
    "celery.rabbitmq.password": string("guest"),
    "celery.rabbitmq.vhost": string(""),
    "celery.concurrency": integer(2),
    "celery.queues": list_of(string(), default=CELERY_QUEUES),
    "celery.logLevel": enum(CELERY_LOG_LEVELS, default="INFO"),

    "gunicorn.workers": integer(4),
    "gunicorn.threads": integer(2),
    "gunicorn.timeout": integer(120, description="Request timeout in seconds."),

    "extraEnvironment": map_of(string()),
}


@constraint("worker counts are positive",
            "gunicorn.workers, gunicorn.threads, gunicorn.timeout and celery.concurrency must be >= 1",
            path="gunicorn.workers")
def _positive_counts(o) -> bool:
    return min(o["gunicorn.workers"], o["gunicorn.threads"],
               o["gunicorn.timeout"], o["celery.concurrency"]) >= 1


@constraint("celery requires a broker host", "celery.rabbitmq.host must be set when celery.enable is true",
            path="celery.rabbitmq.host")
def _celery_broker(o) -> bool:
    return not o["celery.enable"] or bool(o["celery.rabbitmq.host"])


@constraint("celery requires a queue", "celery.queues must not be empty when celery.enable is true",
            path="celery.queues")
def _celery_queues(o) -> bool:
    return not o["celery.enable"] or bool(o["celery.queues"])


SCHEMA = OptionSchema(
    kind="backend",
    options=OPTIONS,
    constraints=[_positive_counts, _celery_broker, _celery_queues],
)


def exposed_ports(o) -> List[int]:
    return [o["bindToPort"]]
