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
Validation of raw option trees against the per-kind option schemas.

Raw options may be nested mappings or use dotted keys; both are flattened to
schema paths first. Unknown keys are a hard error, omitted keys take their
defaults and named cross-field constraints run last.
"""
import copy
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional

from ..MODELS.option_schema import OptionDescriptor, OptionSchema, OptionType
from ..SCHEMAS.registry import get_schema
from ..errors import (
    ConstraintViolationError,
    InvalidEnumValueError,
    MissingRequiredOptionError,
    OptionTypeError,
    UnknownOptionError,
)


class ValidatedOptions(Mapping):
    """
    Immutable mapping of every schema path of one kind to its final value.
    Lists are frozen to tuples and records/maps to read-only mappings.
    """

    def __init__(self, kind: str, values: Mapping[str, Any], service: Optional[str] = None):
        self._kind = kind
        self._service = service
        self._values = MappingProxyType({k: _freeze(v) for k, v in values.items()})

    @property
    def kind(self) -> str:
        return self._kind

    @property
    def service(self) -> Optional[str]:
        return self._service

    def __getitem__(self, path: str) -> Any:
        return self._values[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"ValidatedOptions({self._kind!r}, {dict(self._values)!r})"

    def group(self, prefix: str) -> Dict[str, Any]:
        """
        Returns the options below ``prefix`` keyed by their remaining path,
        e.g. ``group("acme")`` -> ``{"enable": ..., "email": ...}``.
        """
        start = prefix + "."
        return {k[len(start):]: v for k, v in self._values.items() if k.startswith(start)}


def _freeze(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    return value


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "list"
    if isinstance(value, Mapping):
        return "mapping"
    return type(value).__name__


def flatten_options(schema: OptionSchema, raw: Mapping[str, Any], prefix: str = "") -> Dict[str, Any]:
    """
    Flattens nested option groups into dotted schema paths.

    A mapping is descended into only when its path is a group of options in the
    schema; map-typed options such as ``frontends`` stay whole.

    :param schema: Schema of the service kind.
    :param raw: Raw options as read from the manifest.
    :param prefix: Path prefix of ``raw`` within the option tree.
    :return: Options keyed by dotted path, in the order they were given.
    """
    flat: Dict[str, Any] = {}
    for key, value in raw.items():
        if not isinstance(key, str):
            raise OptionTypeError(f"{prefix}{key}", "string key", _type_name(key))
        path = f"{prefix}{key}"
        if schema.lookup(path) is None and isinstance(value, Mapping) and schema.is_prefix(path):
            flat.update(flatten_options(schema, value, path + "."))
        else:
            flat[path] = value
    return flat


def default_value(desc: OptionDescriptor) -> Any:
    if desc.type == OptionType.RECORD:
        return {name: default_value(field) for name, field in desc.fields.items()}
    return copy.deepcopy(desc.default)


def check_value(path: str, desc: OptionDescriptor, value: Any, service: Optional[str] = None) -> Any:
    """
    Checks one value against its descriptor and returns the normalized value.
    """
    if value is None:
        if desc.nullable:
            return None
        raise OptionTypeError(path, desc.describe(), "null", service)

    kind = desc.type
    if kind in (OptionType.STRING, OptionType.LINES):
        if not isinstance(value, str):
            raise OptionTypeError(path, desc.describe(), _type_name(value), service)
        return value

    if kind == OptionType.BOOL:
        if not isinstance(value, bool):
            raise OptionTypeError(path, desc.describe(), _type_name(value), service)
        return value

    if kind in (OptionType.INT, OptionType.PORT):
        if isinstance(value, bool) or not isinstance(value, int):
            raise OptionTypeError(path, desc.describe(), _type_name(value), service)
        if kind == OptionType.PORT and not 1 <= value <= 65535:
            raise OptionTypeError(path, desc.describe(), f"int {value}", service)
        return value

    if kind == OptionType.ENUM:
        if not isinstance(value, str):
            raise OptionTypeError(path, desc.describe(), _type_name(value), service)
        if value not in desc.choices:
            raise InvalidEnumValueError(path, value, desc.choices, service)
        return value

    if kind == OptionType.LIST:
        if not isinstance(value, (list, tuple)):
            raise OptionTypeError(path, desc.describe(), _type_name(value), service)
        return [check_value(f"{path}[{i}]", desc.item, v, service) for i, v in enumerate(value)]

    if kind == OptionType.MAP:
        if not isinstance(value, Mapping):
            raise OptionTypeError(path, desc.describe(), _type_name(value), service)
        checked = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise OptionTypeError(f"{path}.{key}", "string key", _type_name(key), service)
            checked[key] = check_value(f"{path}.{key}", desc.item, item, service)
        return checked

    if kind == OptionType.RECORD:
        if not isinstance(value, Mapping):
            raise OptionTypeError(path, desc.describe(), _type_name(value), service)
        for key in value:
            if key not in desc.fields:
                raise UnknownOptionError(f"{path}.{key}", service)
        checked = {}
        for name, field in desc.fields.items():
            if name in value:
                checked[name] = check_value(f"{path}.{name}", field, value[name], service)
            elif field.required:
                raise MissingRequiredOptionError(f"{path}.{name}", service)
            else:
                checked[name] = default_value(field)
        return checked

    raise OptionTypeError(path, desc.describe(), _type_name(value), service)


def validate(service_kind, raw_options: Optional[Mapping[str, Any]],
             service: Optional[str] = None) -> ValidatedOptions:
    """
    Validates raw options for a service kind.

    :param service_kind: ServiceKind or its string value.
    :param raw_options: Nested or dotted raw options.
    :param service: Name of the service, used in error messages.
    :return: Immutable validated options with defaults applied.
    :raises ValidationError: On the first unknown key, type or enum mismatch,
        missing required option or violated constraint.
    """
    schema = get_schema(service_kind)
    flat = flatten_options(schema, raw_options or {})

    for path in flat:
        if schema.lookup(path) is None:
            raise UnknownOptionError(path, service)

    values: Dict[str, Any] = {}
    for path, desc in schema.options.items():
        if path in flat:
            values[path] = check_value(path, desc, flat[path], service)
        elif desc.required:
            raise MissingRequiredOptionError(path, service)
        else:
            values[path] = default_value(desc)

    validated = ValidatedOptions(schema.kind, values, service)
    for rule in schema.constraints:
        if not rule.check(validated):
            raise ConstraintViolationError(rule.name, rule.message, rule.path, service)
    return validated


def merge_options(service_kind, *layers: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Merges option layers in order, later layers winning per option path.

    Map-typed options merge per entry, everything else (lists included) is
    replaced wholesale.
    """
    schema = get_schema(service_kind)
    merged: Dict[str, Any] = {}
    for layer in layers:
        for path, value in flatten_options(schema, layer or {}).items():
            desc = schema.lookup(path)
            previous = merged.get(path)
            if (desc is not None and desc.type == OptionType.MAP
                    and isinstance(value, Mapping) and isinstance(previous, Mapping)):
                combined = dict(previous)
                combined.update(value)
                merged[path] = combined
            else:
                merged[path] = value
    return merged


def resolve(service_kind, base: Optional[Mapping[str, Any]], *overrides: Optional[Mapping[str, Any]],
            service: Optional[str] = None) -> ValidatedOptions:
    """
    Resolves a base option tree and its overrides into one validated structure.
    """
    return validate(service_kind, merge_options(service_kind, base, *overrides), service)
