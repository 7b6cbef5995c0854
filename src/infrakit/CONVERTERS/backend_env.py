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
Rendering of the research backend's environment file and its gunicorn,
celery worker and celery beat units.

The environment file uses ``KEY="value"`` lines, which both systemd's
``EnvironmentFile=`` and python-dotenv read back unchanged.
"""
import re
from typing import Dict, List, Tuple

from ..errors import RenderError
from .to_systemd import HARDENING, UnitSpec

CONFIG_PATH = "etc/beiwe-backend/environment"

ENV_KEY = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def broker_url(o) -> str:
    return (f"amqp://{o['celery.rabbitmq.user']}:{o['celery.rabbitmq.password']}"
            f"@{o['celery.rabbitmq.host']}:{o['celery.rabbitmq.port']}/{o['celery.rabbitmq.vhost']}")


def environment(o) -> Dict[str, str]:
    """
    Builds the process environment of every backend unit.

    :param o: Validated backend options.
    :return: Variables in a stable order; extraEnvironment entries override
        built-in ones in place and new keys follow sorted.
    """
    env = {
        "DOMAIN_NAME": o["domainName"],
        "FLASK_SECRET_KEY": o["flaskSecretKey"],
        "SYSADMIN_EMAILS": o["sysadminEmails"],
        "RDS_DB_NAME": o["database.name"],
        "RDS_USERNAME": o["database.user"],
        "RDS_PASSWORD": o["database.password"],
        "RDS_HOSTNAME": o["database.host"],
        "RDS_PORT": str(o["database.port"]),
        "PGSSLMODE": o["database.sslmode"],
        "DATABASE_SSLMODE": o["database.sslmode"],
        "S3_BUCKET": o["s3.bucket"],
        "AWS_ACCESS_KEY_ID": o["s3.accessKeyId"],
        "AWS_SECRET_ACCESS_KEY": o["s3.secretAccessKey"],
        "BEIWE_SERVER_AWS_ACCESS_KEY_ID": o["s3.accessKeyId"],
        "BEIWE_SERVER_AWS_SECRET_ACCESS_KEY": o["s3.secretAccessKey"],
        "S3_ACCESS_CREDENTIALS_USER": o["s3.accessKeyId"],
        "S3_ACCESS_CREDENTIALS_KEY": o["s3.secretAccessKey"],
        "DJANGO_SETTINGS_MODULE": "config.django_settings",
    }
    if o["s3.endpoint"]:
        env["S3_ENDPOINT_URL"] = o["s3.endpoint"]
        env["AWS_S3_ENDPOINT_URL"] = o["s3.endpoint"]
    if o["sentry.dsn"]:
        env["SENTRY_ELASTIC_BEANSTALK_DSN"] = o["sentry.dsn"]
        env["SENTRY_DATA_PROCESSING_DSN"] = o["sentry.dsn"]
    if o["celery.enable"]:
        url = broker_url(o)
        env["CELERY_BROKER_URL"] = url
        env["BROKER_URL"] = url
        env["CELERY_MANAGER_IP"] = f"{o['celery.rabbitmq.host']}:{o['celery.rabbitmq.port']}"
        env["CELERY_PASSWORD"] = o["celery.rabbitmq.password"]

    extra = o["extraEnvironment"]
    for key in sorted(extra):
        if not ENV_KEY.match(key):
            raise RenderError(f"extraEnvironment.{key}", "is not a valid environment variable name",
                              o.service)
        env[key] = extra[key]
    return env


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def config_path(o) -> str:
    return CONFIG_PATH


def render_config(o) -> str:
    return "".join(f"{key}={_quote(value)}\n" for key, value in environment(o).items())


def companions(o) -> List[Tuple[str, str]]:
    return []


def _base_unit(o, **kwargs) -> UnitSpec:
    env_files = [f"/{CONFIG_PATH}"]
    if o["database.passwordSecretName"]:
        env_files.append(f"/run/secrets/{o['database.passwordSecretName']}")
    return UnitSpec(
        user=o["user"],
        group=o["group"],
        working_dir=f"{o['packageDir']}/lib/beiwe-backend",
        environment_files=env_files,
        **kwargs,
    )


def units(name: str, o) -> List[UnitSpec]:
    """
    The gunicorn web unit, plus celery worker and beat units when celery is enabled.
    """
    bin_dir = f"{o['packageDir']}/bin"
    data_dir = o["dataDir"]

    web = _base_unit(
        o,
        name=f"{name}.service",
        description=f"Beiwe Backend {o['version']} - Digital Phenotyping Research Platform",
        exec_start_pre=[f"-+{bin_dir}/beiwe-manage migrate --noinput"],
        exec_start=(f"{bin_dir}/beiwe-gunicorn wsgi:application"
                    f" --bind {o['bindToIp']}:{o['bindToPort']}"
                    f" --workers {o['gunicorn.workers']}"
                    f" --threads {o['gunicorn.threads']}"
                    f" --timeout {o['gunicorn.timeout']}"
                    " --access-logfile - --error-logfile -"),
        hardening={**HARDENING, "ReadWritePaths": data_dir},
    )
    result = [web]
    if not o["celery.enable"]:
        return result

    worker_unit = f"{name}-celery-worker.service"
    result.append(_base_unit(
        o,
        name=worker_unit,
        description="Beiwe Celery Worker - Background Task Processing",
        exec_start=(f"{bin_dir}/beiwe-celery -A services.celery_data_processing worker"
                    f" --queues={','.join(o['celery.queues'])}"
                    f" --concurrency={o['celery.concurrency']}"
                    f" --loglevel={o['celery.logLevel']}"),
        restart_sec="10s",
        after=[web.name],
        wants=[web.name],
        hardening={**HARDENING, "ReadWritePaths": f"{data_dir} /tmp"},
        primary=False,
    ))
    result.append(_base_unit(
        o,
        name=f"{name}-celery-beat.service",
        description="Beiwe Celery Beat - Task Scheduler",
        exec_start=(f"{bin_dir}/beiwe-celery -A services.celery_data_processing beat"
                    f" --loglevel={o['celery.logLevel']}"
                    f" --schedule={data_dir}/celerybeat-schedule"),
        restart_sec="10s",
        after=[worker_unit],
        wants=[worker_unit],
        hardening={**HARDENING, "ReadWritePaths": data_dir},
        primary=False,
    ))
    return result


def check_command(path: str) -> List[str]:
    return []
