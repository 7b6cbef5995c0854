"""
Error taxonomy for infrakit.

Every error carries an exit ``code`` so the CLI can report the first fatal
error as its process exit status.
"""
from typing import Iterable, List, Optional


class InfrakitError(Exception):
    """Base class for all infrakit errors."""

    code = 1

    def __init__(self, message: str, service: Optional[str] = None):
        self.service = service
        self.message = message
        super().__init__(f"[{service}] {message}" if service else message)


# Load time

class ManifestError(InfrakitError):
    """The deployment manifest could not be read or is malformed."""

    code = 2


class DuplicateServiceError(InfrakitError):
    code = 3

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"service name '{name}' is declared more than once")


class UnknownDependencyError(InfrakitError):
    code = 4

    def __init__(self, name: str, service: Optional[str] = None):
        self.name = name
        if service:
            message = f"depends on undeclared service '{name}'"
        else:
            message = f"unknown service '{name}'"
        super().__init__(message, service)


# Validation

class ValidationError(InfrakitError):
    """Base class for option validation failures."""

    code = 10

    def __init__(self, path: str, message: str, service: Optional[str] = None):
        self.path = path
        super().__init__(f"option '{path}': {message}", service)


class UnknownOptionError(ValidationError):
    code = 10

    def __init__(self, path: str, service: Optional[str] = None):
        super().__init__(path, "unknown option", service)


class OptionTypeError(ValidationError, TypeError):
    code = 11

    def __init__(self, path: str, expected: str, actual: str, service: Optional[str] = None):
        self.expected = expected
        self.actual = actual
        super().__init__(path, f"expected {expected}, got {actual}", service)


class InvalidEnumValueError(ValidationError):
    code = 12

    def __init__(self, path: str, value, allowed: Iterable[str], service: Optional[str] = None):
        self.value = value
        self.allowed: List[str] = list(allowed)
        super().__init__(
            path,
            f"invalid value {value!r}, allowed: {', '.join(self.allowed)}",
            service,
        )


class MissingRequiredOptionError(ValidationError):
    code = 13

    def __init__(self, path: str, service: Optional[str] = None):
        super().__init__(path, "required option is missing", service)


class ConstraintViolationError(ValidationError):
    code = 14

    def __init__(self, rule: str, message: str, path: str = "", service: Optional[str] = None):
        self.rule = rule
        self.message_detail = message
        InfrakitError.__init__(self, f"rule '{rule}' violated: {message}", service)
        self.path = path


# Ordering

class CycleError(InfrakitError):
    code = 20

    def __init__(self, cycle: List[str]):
        self.cycle = list(cycle)
        super().__init__(f"dependency cycle: {' -> '.join(self.cycle)}")


# Rendering

class RenderError(InfrakitError):
    code = 30

    def __init__(self, path: str, message: str, service: Optional[str] = None):
        self.path = path
        super().__init__(f"option '{path}': {message}", service)


class ConfigCheckError(InfrakitError):
    """The target binary rejected a rendered configuration file."""

    code = 31


class PathConflictError(InfrakitError):
    """Two services render a file to the same path."""

    code = 32

    def __init__(self, path: str, first: str, second: str):
        self.path = path
        self.services = [first, second]
        super().__init__(f"'{path}' is rendered by both '{first}' and '{second}'", second)


# Apply

class ApplyError(InfrakitError):
    """The service manager failed to start or stop a unit."""

    code = 40


# Probing

class ProbeFailure(InfrakitError):
    code = 50

    def __init__(self, results, service: Optional[str] = None):
        self.results = list(results)
        targets = ", ".join(f"{r.target} ({r.status.value})" for r in self.results)
        super().__init__(f"readiness probes did not pass: {targets}", service)


class ProbeTimeout(ProbeFailure):
    code = 51
