from typing import Any, Mapping

from .exceptions import *

__all__ = [
    "translate_error",
]


ERROR_CLASSES = {
    cls.js_name: cls
    for cls in [
        JavaScriptSyntaxError,
        JavaScriptReferenceError,
        JavaScriptTypeError,
        JavaScriptRangeError,
        JavaScriptEvalError,
        JavaScriptURIError,
    ]
}


def translate_error(error: Mapping[str, Any]) -> JavaScriptError:
    """
    Builds the Python exception matching an error reported by the runtime.
    The runtime describes every thrown value as a name, a message and a stack
    (which might be empty if what was thrown wasn't an Error).

    Unknown names (custom Error subclasses, InternalError, thrown strings,
    etc.) give a plain JavaScriptError which keeps the original name around.

    Parameters
    ----------
    error
        The error description, as sent by the runtime
    """

    match error:
        case {"name": str(name), "message": str(message), **rest}:
            stack = rest.get("stack")

            if not isinstance(stack, str):
                stack = ""

            cls = ERROR_CLASSES.get(name, JavaScriptError)
            return cls(message=message, stack=stack, name=name)
        case _:
            return JavaScriptError(message=f"malformed error: {error!r}")
