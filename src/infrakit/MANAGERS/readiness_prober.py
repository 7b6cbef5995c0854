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
Readiness probing for deployed services: TCP ports, HTTP endpoints, process
names and systemd units, polled until they pass or their time budget is spent.
"""
import socket
import subprocess
import threading
import time
import urllib.error
import urllib.request
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import psutil
from tenacity import Retrying, retry_if_exception_type

from ..MODELS.probe_result import ProbeReport, ProbeResult, ProbeStatus
from ..MODELS.service_spec import ProbeKind, ProbeSpec
from ..UTILS.host_port import parse_host_port


class CheckFailed(Exception):
    """The check ran to completion and the target was not ready."""


class AttemptTimedOut(Exception):
    """The check was abandoned because it ran into the probe deadline."""


def check_port(target: str, budget: float, expected_status: Sequence[int]):
    try:
        host, port = parse_host_port(target)
    except ValueError as e:
        raise CheckFailed(str(e)) from None
    try:
        with socket.create_connection((host, port), timeout=budget):
            pass
    except socket.timeout:
        raise AttemptTimedOut(f"connect to {host}:{port} timed out") from None
    except OSError as e:
        raise CheckFailed(f"connect to {host}:{port} failed: {e.strerror or e}") from None


def check_http(target: str, budget: float, expected_status: Sequence[int]):
    """
    Issues a GET; the probe passes only on an exact status code match.
    """
    try:
        with urllib.request.urlopen(target, timeout=budget) as response:
            status = response.status
    except urllib.error.HTTPError as e:
        status = e.code
        e.close()
    except urllib.error.URLError as e:
        if isinstance(e.reason, socket.timeout):
            raise AttemptTimedOut(f"GET {target} timed out") from None
        raise CheckFailed(f"GET {target} failed: {e.reason}") from None
    except socket.timeout:
        raise AttemptTimedOut(f"GET {target} timed out") from None
    except (OSError, ValueError) as e:
        raise CheckFailed(f"GET {target} failed: {e}") from None

    if status not in expected_status:
        allowed = ", ".join(str(s) for s in expected_status)
        raise CheckFailed(f"GET {target} returned {status}, expected one of {allowed}")


def check_process(target: str, budget: float, expected_status: Sequence[int]):
    for proc in psutil.process_iter(["name"]):
        if proc.info.get("name") == target:
            return
    raise CheckFailed(f"no process named {target}")


def check_systemd_unit(target: str, budget: float, expected_status: Sequence[int]):
    try:
        result = subprocess.run(
            ["systemctl", "is-active", target],
            capture_output=True,
            timeout=budget,
            text=True,
        )
    except subprocess.TimeoutExpired:
        raise AttemptTimedOut(f"systemctl is-active {target} timed out") from None
    except OSError as e:
        raise CheckFailed(f"systemctl could not be run: {e}") from None
    state = result.stdout.strip()
    if state != "active":
        raise CheckFailed(f"unit {target} is {state or 'unknown'}")


CHECKS: Dict[ProbeKind, Callable[[str, float, Sequence[int]], None]] = {
    ProbeKind.PORT: check_port,
    ProbeKind.HTTP: check_http,
    ProbeKind.PROCESS: check_process,
    ProbeKind.SYSTEMD_UNIT: check_systemd_unit,
}


def run_within(check: Callable[[str, float, Sequence[int]], None], target: str,
               budget: float, expected_status: Sequence[int]):
    """
    Runs one check on a worker thread and waits at most ``budget`` seconds.

    Socket timeouts bound each read, not the whole exchange; a peer that
    trickles its answer is cut off here. An abandoned worker is a daemon
    thread left to finish on its own.

    :raises AttemptTimedOut: If the check is still running at the deadline.
    """
    outcome: List[Exception] = []

    def run():
        try:
            check(target, budget, expected_status)
        except Exception as e:
            outcome.append(e)

    worker = threading.Thread(target=run, name=f"probe-{target}", daemon=True)
    worker.start()
    worker.join(budget)
    if worker.is_alive():
        raise AttemptTimedOut(f"check of {target} did not finish within {budget:.2f}s")
    if outcome:
        raise outcome[0]


def probe(target: str, check_kind, timeout: float, poll_interval: float,
          expected_status: Sequence[int] = (200,), service: Optional[str] = None) -> ProbeResult:
    """
    Polls one readiness check until it passes or the time budget is spent.

    Args:
        target: ``host:port`` for port checks, a URL for http checks, a
            process name or a unit name.
        check_kind: ProbeKind or its string value.
        timeout: Total budget in seconds. A budget of zero or less returns
            ``timeout`` without issuing a check.
        poll_interval: Seconds to wait between failed attempts.
        expected_status: HTTP status codes that count as ready.
        service: Owning service, carried into the result.

    Returns:
        A terminal ProbeResult. ``failed`` is only returned once the whole
        budget has elapsed; ``timeout`` when an attempt ran into the deadline.
    """
    kind = ProbeKind(check_kind)
    result = ProbeResult(target=target, kind=kind, service=service)
    if timeout <= 0:
        return result.finalize(ProbeStatus.TIMEOUT, 0.0, 0, "probe timeout must be positive")

    check = CHECKS[kind]
    start = time.monotonic()
    deadline = start + timeout
    attempts = 0
    last_error: List[str] = []

    def attempt():
        nonlocal attempts
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise CheckFailed(last_error[-1] if last_error else "no attempt completed")
        attempts += 1
        try:
            run_within(check, target, remaining, expected_status)
        except CheckFailed as e:
            last_error.append(str(e))
            raise

    def deadline_reached(retry_state) -> bool:
        return time.monotonic() >= deadline

    def wait_within_budget(retry_state) -> float:
        return max(0.0, min(poll_interval, deadline - time.monotonic()))

    retryer = Retrying(
        stop=deadline_reached,
        wait=wait_within_budget,
        retry=retry_if_exception_type(CheckFailed),
        reraise=True,
    )
    try:
        retryer(attempt)
    except CheckFailed as e:
        return result.finalize(ProbeStatus.FAILED, time.monotonic() - start, attempts, str(e))
    except AttemptTimedOut as e:
        return result.finalize(ProbeStatus.TIMEOUT, time.monotonic() - start, attempts, str(e))
    return result.finalize(ProbeStatus.OK, time.monotonic() - start, attempts)


def run_probe_spec(spec: ProbeSpec, service: Optional[str] = None) -> ProbeResult:
    return probe(spec.target, spec.kind, spec.timeout, spec.poll_interval,
                 spec.expected_status, service=service)


class ProbePool:
    """
    Runs independent probes on a bounded worker pool.

    One failing probe never cancels the others. ``cancel()`` stops launching
    probes that have not started yet; those stay ``pending`` in the report,
    while probes already running finish on their own.
    """

    def __init__(self, max_workers: int = 4):
        """
        Initializes the pool.

        :param max_workers: Upper bound of concurrently running probes.
        """
        self.max_workers = max(1, max_workers)
        self._cancelled = threading.Event()

    def cancel(self):
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _run(self, service: Optional[str], spec: ProbeSpec) -> ProbeResult:
        if self._cancelled.is_set():
            return ProbeResult(target=spec.target, kind=spec.kind, service=service)
        return run_probe_spec(spec, service)

    def run(self, probes: Iterable[Tuple[Optional[str], ProbeSpec]]) -> ProbeReport:
        """
        Runs probes concurrently and collects their results in submission order.

        :param probes: ``(service, probe spec)`` pairs.
        :return: The report of every submitted probe.
        """
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="probe") as executor:
            futures = [executor.submit(self._run, service, spec) for service, spec in probes]
            results = [future.result() for future in futures]
        return ProbeReport(results=results)
