"""
Utilities for string interpolation using environment variables.
"""
import re
from typing import Any, Dict, Mapping

from ..errors import ManifestError

# Group 1: escaped "$$", group 2: VAR name, group 3: - or +, group 4: default or value
PATTERN = re.compile(r'(\$\$)|\$\{([^}:]+)(?::(-|\+)([^}]*))?\}')


class EnvironmentInterpolator:
    """
    Utility for interpolating environment variables in strings and manifest trees.
    Supports ${VAR}, ${VAR:-default}, ${VAR:+value} and $$ for a literal dollar.
    """

    @staticmethod
    def interpolate(template: str, context: Mapping[str, str]) -> str:
        """
        Interpolates environment variables in the template string using the provided context.

        :param template: The string containing ${VAR} placeholders.
        :param context: The environment variables context.
        :return: The interpolated string.
        :raises KeyError: If a variable is not found and no default is provided.
        """
        def replace(match):
            if match.group(1):
                return "$"
            var_name = match.group(2)
            modifier = match.group(3)
            alt_value = match.group(4)

            value = context.get(var_name)
            if modifier == '-':
                # Unset or empty falls back to the default
                return value if value else alt_value
            if modifier == '+':
                return alt_value if value else ''
            if value is None:
                raise KeyError(var_name)
            return value

        return PATTERN.sub(replace, template)

    @classmethod
    def interpolate_tree(cls, tree: Any, context: Mapping[str, str], path: str = "") -> Any:
        """
        Interpolates every string value of a parsed YAML tree. Keys are left as written.

        :raises ManifestError: Naming the location of an unset variable.
        """
        if isinstance(tree, str):
            try:
                return cls.interpolate(tree, context)
            except KeyError as e:
                raise ManifestError(f"variable {e.args[0]} is not set (at '{path or '<root>'}')") from None
        if isinstance(tree, dict):
            result: Dict[Any, Any] = {}
            for key, value in tree.items():
                result[key] = cls.interpolate_tree(value, context, f"{path}.{key}" if path else str(key))
            return result
        if isinstance(tree, list):
            return [cls.interpolate_tree(v, context, f"{path}[{i}]") for i, v in enumerate(tree)]
        return tree
