__all__ = [
    "JSBridgeException",
    "JSBridgeTypeError",
    "EngineError",
    "ContextClosedError",
    "JavaScriptError",
    "JavaScriptSyntaxError",
    "JavaScriptReferenceError",
    "JavaScriptTypeError",
    "JavaScriptRangeError",
    "JavaScriptEvalError",
    "JavaScriptURIError",
]


class JSBridgeException(Exception):
    """
    Root exception for things that happen here
    """


class JSBridgeTypeError(JSBridgeException, TypeError):
    """
    A Python value could not be handed over to JavaScript. This is raised
    before anything is sent to the engine.
    """


class EngineError(JSBridgeException):
    """
    The engine could not be prepared, started or talked to
    """


class ContextClosedError(EngineError):
    """
    The engine behind a context has been torn down, the context cannot be
    used anymore
    """


class JavaScriptError(JSBridgeException):
    """
    Forwarded from the JS side, replicating the JS Error object as closely
    as possible
    """

    js_name = "Error"

    def __init__(
        self, message: str = "unknown error", stack: str = "", name: str = ""
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stack = stack
        self.name = name or self.js_name

    def __str__(self):
        """
        Try to replicate the JS Error object as closely as possible and have
        a nice render
        """

        if self.stack:
            return f"{self.message}:\n{self.stack}"

        return self.message


class JavaScriptSyntaxError(JavaScriptError):
    js_name = "SyntaxError"


class JavaScriptReferenceError(JavaScriptError):
    js_name = "ReferenceError"


class JavaScriptTypeError(JavaScriptError, TypeError):
    js_name = "TypeError"


class JavaScriptRangeError(JavaScriptError, ValueError):
    js_name = "RangeError"


class JavaScriptEvalError(JavaScriptError):
    js_name = "EvalError"


class JavaScriptURIError(JavaScriptError, ValueError):
    js_name = "URIError"
