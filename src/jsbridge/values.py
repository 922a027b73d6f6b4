from threading import Lock
from typing import Optional
from weakref import ref

__all__ = [
    "ComplexObject",
]


class ComplexObject:
    """
    Stands for a JavaScript value that exists but cannot be represented in
    Python (functions, dates, regular expressions, symbols, etc.).

    There is one shared instance per process, obtained through instance().
    The shared instance is only weakly held: when nobody uses it anymore it
    can be collected, and the next call to instance() will simply build a
    new one. All instances are equal to each other, so it never matters
    which one you got.
    """

    _ref: Optional[ref] = None
    _lock = Lock()

    __slots__ = ("__weakref__",)

    @classmethod
    def instance(cls) -> "ComplexObject":
        """
        Returns the shared instance, creating it if it does not exist (or
        does not exist anymore).
        """

        if cls._ref is not None and (obj := cls._ref()) is not None:
            return obj

        with cls._lock:
            if cls._ref is not None and (obj := cls._ref()) is not None:
                return obj

            obj = cls()
            cls._ref = ref(obj)

            return obj

    def __eq__(self, other):
        return isinstance(other, ComplexObject)

    def __hash__(self):
        return hash(ComplexObject)

    def __bool__(self):
        return True

    def __repr__(self):
        return "<ComplexObject>"
