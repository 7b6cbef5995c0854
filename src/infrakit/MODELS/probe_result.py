"""
Models for readiness probe outcomes and aggregated reports.
"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from .service_spec import ProbeKind


class ProbeStatus(str, Enum):
    """
    Lifecycle states of a probe. Everything but PENDING is terminal.
    """
    PENDING = "pending"
    OK = "ok"
    FAILED = "failed"
    TIMEOUT = "timeout"


class ProbeResult(BaseModel):
    """
    Outcome of one readiness check.
    """
    model_config = ConfigDict(frozen=True)

    target: str
    kind: ProbeKind
    status: ProbeStatus = ProbeStatus.PENDING
    elapsed: float = 0.0
    attempts: int = 0
    error: Optional[str] = None
    service: Optional[str] = None

    @property
    def terminal(self) -> bool:
        return self.status != ProbeStatus.PENDING

    @property
    def ok(self) -> bool:
        return self.status == ProbeStatus.OK

    def finalize(self, status: ProbeStatus, elapsed: float, attempts: int,
                 error: Optional[str] = None) -> "ProbeResult":
        """
        Returns the terminal copy of a pending result.

        :raises ValueError: If the result is already terminal or ``status`` is PENDING.
        """
        if self.terminal:
            raise ValueError(f"probe for {self.target} already finished as {self.status.value}")
        if status == ProbeStatus.PENDING:
            raise ValueError("a probe cannot be finalized as pending")
        return self.model_copy(update={
            "status": status,
            "elapsed": elapsed,
            "attempts": attempts,
            "error": error,
        })


class ProbeReport(BaseModel):
    """
    Aggregate of probe results, kept in submission order.
    """
    model_config = ConfigDict(frozen=True)

    results: List[ProbeResult] = []

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def failures(self) -> List[ProbeResult]:
        return [r for r in self.results if not r.ok]

    @property
    def timed_out(self) -> bool:
        return any(r.status == ProbeStatus.TIMEOUT for r in self.results)

    def for_service(self, name: str) -> List[ProbeResult]:
        return [r for r in self.results if r.service == name]

    def merge(self, other: "ProbeReport") -> "ProbeReport":
        return ProbeReport(results=self.results + other.results)

    def table(self) -> str:
        """
        Formats the report as a fixed-width table for terminal output.
        """
        rows = [f"{'SERVICE':20} {'KIND':13} {'STATUS':8} {'ELAPSED':>8}  TARGET"]
        rows.append("-" * 72)
        for r in self.results:
            line = (f"{(r.service or '-'):20} {r.kind.value:13} {r.status.value:8} "
                    f"{r.elapsed:7.2f}s  {r.target}")
            if r.error and not r.ok:
                line += f"  ({r.error})"
            rows.append(line)
        return "\n".join(rows)
