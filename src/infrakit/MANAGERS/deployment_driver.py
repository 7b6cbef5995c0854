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
Drives a deployment: plan (validate, order, render), write artefacts, apply
units in dependency order with readiness gating, verify and tear down.
"""
import os
import tempfile
from typing import Dict, Iterable, List, Optional, Tuple

from ..CONVERTERS.renderer import check_command, render_service
from ..MODELS.probe_result import ProbeReport
from ..MODELS.rendered_config import DeploymentPlan, RenderedConfig
from ..MODELS.service_spec import Deployment, ServiceSpec
from ..RUNNERS.dependency_resolver import DOWN, UP, DependencyResolver
from ..RUNNERS.service_applier import DryRunApplier, SystemctlApplier
from ..VALIDATORS.option_validator import ValidatedOptions, resolve
from ..errors import ApplyError, PathConflictError, ProbeFailure, ProbeTimeout
from .readiness_prober import ProbePool


def write_atomic(path: str, content: str, mode: int = 0o644) -> bool:
    """
    Replaces the file at ``path`` with ``content`` in a single rename.

    :return: False when the file already holds exactly this content.
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            if f.read() == content:
                return False
    except (OSError, UnicodeDecodeError):
        pass

    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".infrakit-")
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise
    return True


def probe_error(report: ProbeReport, service: Optional[str] = None) -> ProbeFailure:
    if report.timed_out:
        return ProbeTimeout(report.failures, service)
    return ProbeFailure(report.failures, service)


def check_paths(rendered: Dict[str, Tuple[RenderedConfig, ...]]):
    """
    Makes sure no two services render to the same file, in declaration order.

    :raises PathConflictError: On the first path claimed twice.
    """
    owners: Dict[str, str] = {}
    for name, artefacts in rendered.items():
        for artefact in artefacts:
            owner = owners.setdefault(artefact.path, name)
            if owner != name:
                raise PathConflictError(artefact.path, owner, name)


class DeploymentDriver:
    """
    Deploys the services of a manifest in dependency order.
    """

    def __init__(self, deployment: Deployment, work_dir: str = ".", applier=None,
                 workers: int = 4, dry_run: bool = False):
        """
        Initializes the driver.

        :param deployment: The parsed deployment.
        :param work_dir: Root under which artefacts are written.
        :param applier: Service manager backend; defaults to systemctl, or a
            DryRunApplier when ``dry_run`` is set.
        :param workers: Size of the readiness probe pool.
        :param dry_run: Record actions instead of writing files or touching services.
        """
        self.deployment = deployment
        self.work_dir = work_dir
        self.dry_run = dry_run
        self.workers = workers
        if applier is None:
            applier = DryRunApplier() if dry_run else SystemctlApplier()
        self.applier = applier

    def select(self, targets: Optional[Iterable[str]] = None, direction: str = UP) -> List[ServiceSpec]:
        """
        Orders the whole deployment, then keeps the targets and their
        dependencies (``up``) or dependents (``down``).

        :raises CycleError: If any dependencies form a cycle.
        :raises UnknownDependencyError: If a target is not declared.
        """
        resolver = DependencyResolver(self.deployment.services)
        ordered = resolver.resolve_order()
        targets = list(targets or [])
        if not targets:
            return ordered
        selected = {svc.name for svc in resolver.closure(targets, direction)}
        return [svc for svc in ordered if svc.name in selected]

    def plan(self, targets: Optional[Iterable[str]] = None, direction: str = UP) -> DeploymentPlan:
        """
        Validates every service, orders them and renders their artefacts.
        Nothing is written; any error aborts the whole plan. Every service is
        rendered, so a file claimed by two services is refused even when only
        one of them is selected.

        :param targets: Services to restrict the plan to.
        :param direction: ``up`` to include dependencies, ``down`` for dependents.
        :return: The read-only plan.
        """
        validated: Dict[str, ValidatedOptions] = {}
        for svc in self.deployment.services:
            validated[svc.name] = resolve(svc.kind, svc.options, service=svc.name)

        services = self.select(targets, direction)
        rendered = {
            svc.name: tuple(render_service(svc, validated[svc.name]))
            for svc in self.deployment.services
        }
        check_paths(rendered)
        artefacts = {svc.name: rendered[svc.name] for svc in services}
        return DeploymentPlan(services=tuple(services), artefacts=artefacts)

    def target_path(self, artefact: RenderedConfig) -> str:
        return os.path.join(self.work_dir, artefact.path)

    def write(self, plan: DeploymentPlan) -> List[str]:
        """
        Writes every artefact of the plan, each replaced atomically.

        :return: Paths whose content changed.
        :raises ApplyError: If a file cannot be written.
        """
        changed = []
        for svc in plan.services:
            for artefact in plan.artefacts[svc.name]:
                path = self.target_path(artefact)
                if self.dry_run:
                    print(f"[{svc.name}] Would write {path}")
                    continue
                try:
                    written = write_atomic(path, artefact.content, artefact.mode)
                except OSError as e:
                    raise ApplyError(f"cannot write {path}: {e.strerror or e}", svc.name) from e
                if written:
                    print(f"[{svc.name}] Wrote {path}")
                    changed.append(path)
                else:
                    print(f"[{svc.name}] Unchanged {path}")
        return changed

    def check_configs(self, plan: DeploymentPlan):
        """
        Lets each wrapped daemon validate its rendered primary configuration.

        :raises ConfigCheckError: On the first rejected file.
        """
        for svc in plan.services:
            primary = plan.configs(svc.name)[0]
            command = check_command(svc.kind, self.target_path(primary))
            if command:
                print(f"[{svc.name}] Checking configuration: {' '.join(command)}")
                self.applier.check_config(command, svc.name)

    def wait_ready(self, services: Iterable[ServiceSpec], pool: Optional[ProbePool] = None) -> ProbeReport:
        pool = pool or ProbePool(self.workers)
        return pool.run([(svc.name, p) for svc in services for p in svc.probes])

    def deploy(self, targets: Optional[Iterable[str]] = None, check_config: bool = False,
               keep_going: bool = False) -> ProbeReport:
        """
        Brings services up in dependency order.

        Each service must pass its readiness probes before the next one is
        started. With ``keep_going`` a failing service is reported and the
        rollout continues; the failures are raised once every service was tried.

        :return: Probe results of every started service.
        :raises ProbeFailure: If a service did not become ready.
        """
        plan = self.plan(targets, UP)
        print(f"Starting services in order: {', '.join(plan.order)}")
        self.write(plan)
        if check_config:
            self.check_configs(plan)

        self.applier.daemon_reload()
        report = ProbeReport()
        for svc in plan.services:
            print(f"Starting service: {svc.name}...")
            for unit in plan.units(svc.name):
                self.applier.start(unit.unit, svc.name)

            if self.dry_run or not svc.probes:
                continue
            print(f"Waiting for {svc.name} to become ready...")
            service_report = self.wait_ready([svc])
            report = report.merge(service_report)
            if service_report.ok:
                print(f"Service {svc.name} is ready.")
                continue

            print(service_report.table())
            if not keep_going:
                raise probe_error(service_report, svc.name)
            print(f"Warning: Service {svc.name} is not ready, continuing.")

        if not report.ok:
            raise probe_error(report)
        return report

    def verify(self, targets: Optional[Iterable[str]] = None, pool: Optional[ProbePool] = None) -> ProbeReport:
        """
        Probes the selected services concurrently without changing anything.

        :raises ProbeFailure: After printing the report, if any probe did not pass.
        """
        services = self.select(targets, UP)
        report = self.wait_ready(services, pool)
        print(report.table())
        if not report.ok:
            raise probe_error(report)
        return report

    def teardown(self, targets: Optional[Iterable[str]] = None) -> List[str]:
        """
        Stops services in reverse dependency order and removes their artefacts.
        Targets pull in every service that depends on them.

        :return: Names of the stopped services.
        """
        plan = self.plan(targets, DOWN)
        stopped = []
        for svc in reversed(plan.services):
            print(f"Stopping service: {svc.name}...")
            for unit in reversed(plan.units(svc.name)):
                self.applier.stop(unit.unit, svc.name)
            for artefact in plan.artefacts[svc.name]:
                path = self.target_path(artefact)
                if self.dry_run:
                    print(f"[{svc.name}] Would remove {path}")
                elif os.path.exists(path):
                    try:
                        os.remove(path)
                    except OSError as e:
                        raise ApplyError(f"cannot remove {path}: {e.strerror or e}", svc.name) from e
                    print(f"[{svc.name}] Removed {path}")
            stopped.append(svc.name)
        self.applier.daemon_reload()
        return stopped
