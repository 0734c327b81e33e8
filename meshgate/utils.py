"""
Common utilities shared across the library
"""

# Standard
from typing import Any

# Local
from . import constants

# Sentinel for missing dict values
__MISSING__ = "__MISSING__"


def merge_configs(base, overrides) -> dict:
    """Helper to perform a deep merge of the overrides into the base. The merge
    is done in place, but the resulting dict is also returned for convenience.

    If both the base and overrides have a key and the type of the key for both
    is a dict, recursively merge, otherwise set the base value to the override
    value.
    """
    for key, value in overrides.items():
        if (
            key not in base
            or not isinstance(base[key], dict)
            or not isinstance(value, dict)
        ):
            base[key] = value
        else:
            base[key] = merge_configs(base[key], value)
    return base


def nested_get(dct: dict, key: str, dflt=None) -> Any:
    """Helper to get values from a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict to search
        key:  str
            Key that may contain '.' notation indicating dict nesting

    Returns:
        val:  Any
            Whatever is found at the given key or dflt if the key is not found.
            This includes missing intermediate dicts.
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for i, part in enumerate(parts[:-1]):
        dct = dct.get(part, __MISSING__)
        if dct is __MISSING__:
            return dflt
        if not isinstance(dct, dict):
            raise TypeError(
                f"Intermediate key {constants.NESTED_DICT_DELIM.join(parts[:i + 1])} is not a dict"
            )
    return dct.get(parts[-1], dflt)
