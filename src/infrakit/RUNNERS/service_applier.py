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
Appliers hand rendered units to the service manager. ``SystemctlApplier``
drives systemd; ``DryRunApplier`` records and prints what would happen.
"""
import subprocess
from typing import List, Optional, Tuple

from ..errors import ApplyError, ConfigCheckError


class SystemctlApplier:
    """
    Starts, stops and reloads units through ``systemctl``.
    """

    def __init__(self, systemctl: str = "systemctl", timeout: float = 90.0):
        """
        Initializes the applier.

        :param systemctl: Path or name of the systemctl binary.
        :param timeout: Seconds any single systemctl invocation may take.
        """
        self.systemctl = systemctl
        self.timeout = timeout

    def _run(self, args: List[str], service: Optional[str] = None) -> str:
        command = [self.systemctl] + args
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                timeout=self.timeout,
                text=True,
                shell=False,
            )
        except subprocess.TimeoutExpired:
            raise ApplyError(f"'{' '.join(command)}' timed out after {self.timeout}s", service) from None
        except OSError as e:
            raise ApplyError(f"'{' '.join(command)}' could not be run: {e}", service) from e

        if result.returncode != 0:
            detail = result.stderr.strip() or f"exit code {result.returncode}"
            raise ApplyError(f"'{' '.join(command)}' failed: {detail}", service)
        return result.stdout

    def daemon_reload(self):
        self._run(["daemon-reload"])

    def start(self, unit: str, service: Optional[str] = None):
        self._run(["restart", unit], service)

    def stop(self, unit: str, service: Optional[str] = None):
        self._run(["stop", unit], service)

    def check_config(self, command: List[str], service: Optional[str] = None):
        """
        Runs the wrapped daemon's config check.

        :raises ConfigCheckError: If the daemon rejects the file or cannot be run.
        """
        try:
            result = subprocess.run(command, capture_output=True, timeout=self.timeout, text=True)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ConfigCheckError(f"'{' '.join(command)}' could not be run: {e}", service) from e
        if result.returncode != 0:
            detail = (result.stderr or result.stdout).strip() or f"exit code {result.returncode}"
            raise ConfigCheckError(f"'{' '.join(command)}' rejected the configuration: {detail}", service)


class DryRunApplier:
    """
    Records the actions a real applier would take without touching the system.
    """

    def __init__(self, echo: bool = True):
        self.echo = echo
        self.actions: List[Tuple[str, str]] = []

    def _record(self, action: str, target: str = ""):
        self.actions.append((action, target))
        if self.echo:
            print(f"[dry-run] {action} {target}".rstrip())

    def daemon_reload(self):
        self._record("daemon-reload")

    def start(self, unit: str, service: Optional[str] = None):
        self._record("start", unit)

    def stop(self, unit: str, service: Optional[str] = None):
        self._record("stop", unit)

    def check_config(self, command: List[str], service: Optional[str] = None):
        self._record("check-config", " ".join(command))
