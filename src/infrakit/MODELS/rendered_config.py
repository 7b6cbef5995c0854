"""
Models for rendered configuration artefacts and the deployment plan built from them.
"""
import hashlib
from typing import Dict, List, Tuple

from pydantic import BaseModel, ConfigDict

from .service_spec import ServiceSpec


class RenderedConfig(BaseModel):
    """
    Immutable text blob destined for one file path, relative to the deployment root.
    """
    model_config = ConfigDict(frozen=True)

    service: str
    path: str
    content: str
    mode: int = 0o644

    @property
    def digest(self) -> str:
        return hashlib.sha256(self.content.encode("utf-8")).hexdigest()


class UnitFile(RenderedConfig):
    """
    A rendered systemd unit. ``unit`` is the unit name, e.g. ``haproxy.service``.
    """
    unit: str
    primary: bool = True


class DeploymentPlan(BaseModel):
    """
    Read-only result of a plan pass: services in bring-up order and every
    artefact rendered for them.
    """
    model_config = ConfigDict(frozen=True)

    services: Tuple[ServiceSpec, ...]
    artefacts: Dict[str, Tuple[RenderedConfig, ...]]

    @property
    def order(self) -> List[str]:
        return [svc.name for svc in self.services]

    def units(self, name: str) -> List[UnitFile]:
        return [a for a in self.artefacts.get(name, ()) if isinstance(a, UnitFile)]

    def configs(self, name: str) -> List[RenderedConfig]:
        return [a for a in self.artefacts.get(name, ()) if not isinstance(a, UnitFile)]
