import math
from collections import UserString
from typing import Any, Mapping

from .exceptions import *
from .values import ComplexObject

__all__ = [
    "to_wire",
    "from_wire",
    "ensure_source",
]


# Same limit as the runtime uses for values coming back
MAX_DEPTH = 100

NON_FINITE = {
    "NaN": math.nan,
    "Infinity": math.inf,
    "-Infinity": -math.inf,
}


def _type_name(value: Any) -> str:
    return type(value).__qualname__


def _encode_number(value: float) -> Any:
    if math.isnan(value):
        return "NaN"
    elif math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"

    return value


def to_wire(value: Any, _parents: frozenset = frozenset()) -> Mapping:
    """
    Converts a Python value into the tagged representation that the runtime
    decodes into a JS value. The whole structure is converted before
    anything is sent, so that an unsupported value anywhere in it fails
    without the engine ever seeing the call.

    Parameters
    ----------
    value
        Value to convert. Supported: None, bool, int, float, str,
        UserString, list, tuple and mappings with string keys. Containers
        cannot contain themselves nor be nested deeper than MAX_DEPTH.
    """

    if value is None:
        return dict(t="null")
    elif isinstance(value, bool):
        return dict(t="boolean", v=value)
    elif isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            raise JSBridgeTypeError(
                f"{_type_name(value)} is too large for a JavaScript number"
            )

        return dict(t="number", v=_encode_number(number))
    elif isinstance(value, (str, UserString)):
        return dict(t="string", v=str(value))
    elif isinstance(value, (list, tuple, Mapping)):
        return _container_to_wire(value, _parents)

    raise JSBridgeTypeError(
        f"cannot convert {_type_name(value)} into a JavaScript value"
    )


def _container_to_wire(value: Any, parents: frozenset) -> Mapping:
    if id(value) in parents:
        raise JSBridgeTypeError(f"{_type_name(value)} contains itself")

    if len(parents) >= MAX_DEPTH:
        raise JSBridgeTypeError(
            f"{_type_name(value)} is nested deeper than {MAX_DEPTH} levels"
        )

    parents = parents | {id(value)}

    if isinstance(value, (list, tuple)):
        return dict(t="array", v=[to_wire(item, parents) for item in value])
    else:
        out = {}

        for key, item in value.items():
            if not isinstance(key, (str, UserString)):
                raise JSBridgeTypeError(
                    f"mapping keys must be strings, got {key!r} "
                    f"({_type_name(key)})"
                )

            out[str(key)] = to_wire(item, parents)

        return dict(t="object", v=out)


def from_wire(node: Any) -> Any:
    """
    Converts a tagged value sent by the runtime back into Python. Numbers
    always come out as floats and anything the runtime could not describe
    becomes the shared ComplexObject.

    Parameters
    ----------
    node
        The tagged value
    """

    match node:
        case {"t": "null"}:
            return None
        case {"t": "boolean", "v": bool(value)}:
            return value
        case {"t": "number", "v": str(value)} if value in NON_FINITE:
            return NON_FINITE[value]
        case {"t": "number", "v": int(value) | float(value)}:
            return float(value)
        case {"t": "string", "v": str(value)}:
            return value
        case {"t": "array", "v": list(items)}:
            return [from_wire(item) for item in items]
        case {"t": "object", "v": dict(items)}:
            return {key: from_wire(item) for key, item in items.items()}
        case {"t": "complex"}:
            return ComplexObject.instance()
        case _:
            raise EngineError(f"unexpected value from the runtime: {node!r}")


def ensure_source(source: Any, what: str = "source") -> str:
    """
    Makes sure that source code (or a source name) is a string, accepting
    also objects that are explicitly string-like (UserString).

    Parameters
    ----------
    source
        The value to check
    what
        How to call the value in the error message
    """

    if isinstance(source, str):
        return source
    elif isinstance(source, UserString):
        return str(source)

    raise JSBridgeTypeError(
        f"{what} must be a string, got {_type_name(source)}"
    )
