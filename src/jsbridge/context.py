import logging
from threading import Lock
from typing import Any
from weakref import finalize

from ._convert import ensure_source, from_wire, to_wire
from ._engine import NodeEngine
from .exceptions import *

__all__ = [
    "Context",
]

logger = logging.getLogger(__name__)


class Context:
    """
    A JavaScript context: one isolated global scope living in its own
    engine. Values are converted both ways between Python and JS:

    - None <-> null/undefined
    - bool <-> boolean
    - int, float -> number -> float
    - str <-> string
    - list, tuple -> array -> list
    - mappings with str keys -> object -> dict

    Any other JS value (functions, dates, etc.) comes back as the shared
    ComplexObject.

    The engine is released by close(), when leaving a with block, or at the
    latest when the context is garbage collected. Once released, the
    context cannot be used anymore.

    Parameters
    ----------
    **options
        Passed to NodeEngine (node_bin, debug, connect_timeout,
        env_dir_candidates)
    """

    def __init__(self, **options):
        self._engine = NodeEngine(**options)
        self._lock = Lock()
        self._engine.start()
        self._finalizer = finalize(self, self._engine.stop)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self):
        state = "closed" if self.closed else "live"
        return f"<Context {state}>"

    @property
    def closed(self) -> bool:
        return self._engine.stopped

    def close(self) -> None:
        """
        Tears the engine down. This can be called from any thread, for
        example by a watchdog: a script running at that moment is
        interrupted and its caller gets a ContextClosedError.
        """

        self._finalizer()

    def _request(self, type_: str, **payload) -> Any:
        if self.closed:
            raise ContextClosedError("context is closed")

        with self._lock:
            return self._engine.request(type_, payload)

    def eval_string(self, source: str, source_name: str = "<eval>") -> Any:
        """
        Evaluates the source and returns the value of its last expression,
        converted to Python.

        Parameters
        ----------
        source
            JS code to evaluate
        source_name
            Name used for this code in stack traces (typically a file name)
        """

        result = self._request(
            "eval",
            code=ensure_source(source),
            filename=ensure_source(source_name, "source name"),
            convert=True,
        )

        return from_wire(result)

    def exec_string(self, source: str, source_name: str = "<eval>") -> None:
        """
        Runs the source for its side effects. Unlike eval_string() the result
        is not converted at all.

        Parameters
        ----------
        source
            JS code to run
        source_name
            Name used for this code in stack traces (typically a file name)
        """

        self._request(
            "eval",
            code=ensure_source(source),
            filename=ensure_source(source_name, "source name"),
            convert=False,
        )

    def get_prop(self, name: str) -> Any:
        """
        Reads a global property. Raises JavaScriptReferenceError if there is
        no such property.

        Parameters
        ----------
        name
            Name of the property
        """

        return from_wire(
            self._request("get_prop", name=ensure_source(name, "property name"))
        )

    def call_prop(self, name: str, *args: Any) -> Any:
        """
        Calls the global function with the given name. All arguments are
        converted before anything is sent to the engine, so an argument that
        cannot be converted raises JSBridgeTypeError without calling anything.

        Parameters
        ----------
        name
            Name of the function
        args
            Arguments of the call
        """

        wire_args = [to_wire(arg) for arg in args]
        logger.debug("Calling %s with %s argument(s)", name, len(wire_args))

        return from_wire(
            self._request(
                "call_prop", name=ensure_source(name, "property name"), args=wire_args
            )
        )
