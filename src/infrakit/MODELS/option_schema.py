"""
Models for option schemas: type descriptors, defaults and cross-field constraints.
"""
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict


class OptionType(str, Enum):
    """
    Value types an option descriptor can declare.
    """
    STRING = "string"
    LINES = "lines"
    INT = "int"
    PORT = "port"
    BOOL = "bool"
    ENUM = "enum"
    LIST = "list"
    RECORD = "record"
    MAP = "map"


class OptionDescriptor(BaseModel):
    """
    Describes the type, default and documentation of a single option.

    ``item`` is the element descriptor of a LIST or MAP, ``fields`` the
    member descriptors of a RECORD.
    """
    model_config = ConfigDict(frozen=True)

    type: OptionType
    default: Any = None
    required: bool = False
    nullable: bool = False
    choices: List[str] = []
    item: Optional["OptionDescriptor"] = None
    fields: Dict[str, "OptionDescriptor"] = {}
    description: str = ""

    @property
    def single_line(self) -> bool:
        return self.type in (OptionType.STRING, OptionType.ENUM)

    def describe(self) -> str:
        """
        Human readable type name used in error messages.
        """
        if self.type == OptionType.LIST and self.item is not None:
            name = f"list of {self.item.describe()}"
        elif self.type == OptionType.MAP and self.item is not None:
            name = f"map of {self.item.describe()}"
        elif self.type == OptionType.ENUM:
            name = f"one of {', '.join(self.choices)}"
        elif self.type == OptionType.PORT:
            name = "port (int 1-65535)"
        else:
            name = self.type.value
        return f"{name} or null" if self.nullable else name


OptionDescriptor.model_rebuild()


class Constraint(BaseModel):
    """
    A named cross-field rule evaluated after per-field validation.

    ``check`` receives the validated options and returns True when the rule holds.
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    message: str
    check: Callable[[Any], bool]
    path: str = ""


class OptionSchema(BaseModel):
    """
    The complete option schema of one service kind.
    """
    model_config = ConfigDict(frozen=True)

    kind: str
    options: Dict[str, OptionDescriptor]
    constraints: List[Constraint] = []

    def lookup(self, path: str) -> Optional[OptionDescriptor]:
        return self.options.get(path)

    def is_prefix(self, path: str) -> bool:
        """
        True when ``path`` is a group of options, e.g. ``acme`` for ``acme.email``.
        """
        prefix = path + "."
        return any(p.startswith(prefix) for p in self.options)


# Builders used by the per-kind schema modules.

def string(default: Any = None, nullable: bool = False, required: bool = False,
           description: str = "") -> OptionDescriptor:
    return OptionDescriptor(type=OptionType.STRING, default=default, nullable=nullable,
                            required=required, description=description)


def lines(default: str = "", description: str = "") -> OptionDescriptor:
    return OptionDescriptor(type=OptionType.LINES, default=default, description=description)


def integer(default: Any = None, required: bool = False, description: str = "") -> OptionDescriptor:
    return OptionDescriptor(type=OptionType.INT, default=default, required=required,
                            description=description)


def port(default: Any = None, required: bool = False, description: str = "") -> OptionDescriptor:
    return OptionDescriptor(type=OptionType.PORT, default=default, required=required,
                            description=description)


def boolean(default: bool = False, description: str = "") -> OptionDescriptor:
    return OptionDescriptor(type=OptionType.BOOL, default=default, description=description)


def enum(choices: Sequence[str], default: Any = None, description: str = "") -> OptionDescriptor:
    return OptionDescriptor(type=OptionType.ENUM, choices=list(choices), default=default,
                            description=description)


def list_of(item: OptionDescriptor, default: Sequence[Any] = (), description: str = "") -> OptionDescriptor:
    return OptionDescriptor(type=OptionType.LIST, item=item, default=list(default),
                            description=description)


def record(fields: Dict[str, OptionDescriptor], description: str = "") -> OptionDescriptor:
    return OptionDescriptor(type=OptionType.RECORD, fields=fields, description=description)


def map_of(item: OptionDescriptor, default: Optional[Dict[str, Any]] = None,
           description: str = "") -> OptionDescriptor:
    return OptionDescriptor(type=OptionType.MAP, item=item, default=dict(default or {}),
                            description=description)


def constraint(name: str, message: str, path: str = ""):
    """
    Decorator turning a predicate into a named Constraint.
    """
    def wrap(check: Callable[[Any], bool]) -> Constraint:
        return Constraint(name=name, message=message, check=check, path=path)
    return wrap
