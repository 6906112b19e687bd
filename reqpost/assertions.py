"""reqpost assertions - chainable expect() matchers for test scripts.

    pm.expect(pm.response.code).to.equal(200)
    pm.expect(pm.response.body).to.have.property("id")
    pm.expect(items).to.be.an("array").and_.lengthOf(3)

Every terminal matcher evaluates immediately, raises AssertionFailure when
it does not hold, and returns the chain so further matchers can follow.
"""

import json
from typing import Any

# Type tags accepted by a()/an(), in JavaScript terms plus Python names.
_TYPE_TAGS = {
    "string": lambda v: isinstance(v, str),
    "str": lambda v: isinstance(v, str),
    "number": lambda v: isinstance(v, int | float) and not isinstance(v, bool),
    "int": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "float": lambda v: isinstance(v, float),
    "boolean": lambda v: isinstance(v, bool),
    "bool": lambda v: isinstance(v, bool),
    "object": lambda v: isinstance(v, dict),
    "dict": lambda v: isinstance(v, dict),
    "array": lambda v: isinstance(v, list | tuple),
    "list": lambda v: isinstance(v, list | tuple),
    "null": lambda v: v is None,
    "none": lambda v: v is None,
    "undefined": lambda v: v is None,
    "function": callable,
}

_KEYWORD_CHAIN_WORDS = {"is", "and", "with"}


class AssertionFailure(AssertionError):
    """A matcher that did not hold."""

    def __init__(self, message: str, expected: Any = None, actual: Any = None):
        super().__init__(message)
        self.message = message
        self.expected = expected
        self.actual = actual


def _show(value: Any) -> str:
    if isinstance(value, str):
        return repr(value)
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return repr(value)


def _serialize(value: Any) -> str:
    return json.dumps(value, default=str)


def _strict_equal(a: Any, b: Any) -> bool:
    # True == 1 in Python; strict equality keeps booleans apart from numbers
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return a == b


class Expectation:
    """Fluent assertion chain returned by ``pm.expect(actual)``."""

    def __init__(self, actual: Any, negate: bool = False):
        self._actual = actual
        self._negate = negate

    # ── chain words ──────────────────────────────────────────────────────

    @property
    def to(self) -> "Expectation":
        return self

    @property
    def be(self) -> "Expectation":
        return self

    @property
    def been(self) -> "Expectation":
        return self

    @property
    def that(self) -> "Expectation":
        return self

    @property
    def which(self) -> "Expectation":
        return self

    @property
    def have(self) -> "Expectation":
        return self

    @property
    def is_(self) -> "Expectation":
        return self

    @property
    def and_(self) -> "Expectation":
        return self

    @property
    def with_(self) -> "Expectation":
        return self

    @property
    def not_(self) -> "Expectation":
        return Expectation(self._actual, negate=not self._negate)

    def __getattr__(self, name: str) -> "Expectation":
        # getattr(chain, "and") and friends, for names Python reserves
        if name in _KEYWORD_CHAIN_WORDS:
            return self
        if name == "not":
            return self.not_
        raise AttributeError(f"'Expectation' object has no attribute {name!r}")

    # ── core ─────────────────────────────────────────────────────────────

    def _check(
        self,
        passed: bool,
        message: str,
        negated_message: str,
        expected: Any = None,
    ) -> "Expectation":
        if self._negate:
            passed, message = not passed, negated_message
        if not passed:
            raise AssertionFailure(message, expected=expected, actual=self._actual)
        return self

    # ── matchers ─────────────────────────────────────────────────────────

    def equal(self, expected: Any) -> "Expectation":
        a = _show(self._actual)
        return self._check(
            _strict_equal(self._actual, expected),
            f"expected {a} to equal {_show(expected)}",
            f"expected {a} to not equal {_show(expected)}",
            expected,
        )

    def eql(self, expected: Any) -> "Expectation":
        a = _show(self._actual)
        return self._check(
            _serialize(self._actual) == _serialize(expected),
            f"expected {a} to deeply equal {_show(expected)}",
            f"expected {a} to not deeply equal {_show(expected)}",
            expected,
        )

    def contain(self, expected: Any) -> "Expectation":
        actual = self._actual
        if isinstance(actual, str):
            passed = str(expected) in actual
        elif isinstance(actual, list | tuple | set | frozenset | dict):
            passed = expected in actual
        else:
            passed = str(expected) in str(actual)
        a = _show(actual)
        return self._check(
            passed,
            f"expected {a} to include {_show(expected)}",
            f"expected {a} to not include {_show(expected)}",
            expected,
        )

    includes = contain

    def ok(self) -> "Expectation":
        a = _show(self._actual)
        return self._check(bool(self._actual), f"expected {a} to be truthy", f"expected {a} to be falsy")

    def true(self) -> "Expectation":
        a = _show(self._actual)
        return self._check(self._actual is True, f"expected {a} to be true", f"expected {a} to not be true", True)

    def false(self) -> "Expectation":
        a = _show(self._actual)
        return self._check(
            self._actual is False, f"expected {a} to be false", f"expected {a} to not be false", False
        )

    def null(self) -> "Expectation":
        a = _show(self._actual)
        return self._check(self._actual is None, f"expected {a} to be null", f"expected {a} to not be null")

    def undefined(self) -> "Expectation":
        a = _show(self._actual)
        return self._check(
            self._actual is None, f"expected {a} to be undefined", f"expected {a} to not be undefined"
        )

    def exist(self) -> "Expectation":
        a = _show(self._actual)
        return self._check(self._actual is not None, f"expected {a} to exist", f"expected {a} to not exist")

    def empty(self) -> "Expectation":
        actual = self._actual
        passed = isinstance(actual, str | list | tuple | dict | set) and len(actual) == 0
        a = _show(actual)
        return self._check(passed, f"expected {a} to be empty", f"expected {a} not to be empty")

    def lengthOf(self, length: int) -> "Expectation":  # noqa: N802
        actual = self._actual
        size = len(actual) if hasattr(actual, "__len__") else None
        a = _show(actual)
        return self._check(
            size == length,
            f"expected {a} to have a length of {length} but got {size}",
            f"expected {a} to not have a length of {length}",
            length,
        )

    def _compare(self, op, word: str, n: Any) -> "Expectation":
        try:
            passed = bool(op(self._actual, n))
        except TypeError:
            passed = False
        a = _show(self._actual)
        return self._check(
            passed,
            f"expected {a} to be {word} {_show(n)}",
            f"expected {a} to not be {word} {_show(n)}",
            n,
        )

    def above(self, n: Any) -> "Expectation":
        return self._compare(lambda a, b: a > b, "above", n)

    def below(self, n: Any) -> "Expectation":
        return self._compare(lambda a, b: a < b, "below", n)

    def atLeast(self, n: Any) -> "Expectation":  # noqa: N802
        return self._compare(lambda a, b: a >= b, "at least", n)

    def atMost(self, n: Any) -> "Expectation":  # noqa: N802
        return self._compare(lambda a, b: a <= b, "at most", n)

    def property(self, name: str) -> "Expectation":
        actual = self._actual
        if isinstance(actual, dict):
            passed = name in actual
        else:
            passed = actual is not None and hasattr(actual, name)
        a = _show(actual)
        return self._check(
            passed,
            f"expected {a} to have property {_show(name)}",
            f"expected {a} to not have property {_show(name)}",
            name,
        )

    def a(self, type_name: str) -> "Expectation":
        tag = type_name.lower()
        check = _TYPE_TAGS.get(tag)
        if check is None:
            raise ValueError(f"Unknown type tag: {type_name}")
        a = _show(self._actual)
        return self._check(
            bool(check(self._actual)),
            f"expected {a} to be a {tag}",
            f"expected {a} not to be a {tag}",
            tag,
        )

    an = a

    def instanceOf(self, cls: type) -> "Expectation":  # noqa: N802
        name = getattr(cls, "__name__", str(cls))
        a = _show(self._actual)
        return self._check(
            isinstance(self._actual, cls),
            f"expected {a} to be an instance of {name}",
            f"expected {a} to not be an instance of {name}",
            name,
        )

    def throw(self, expected: Any = None) -> "Expectation":
        """Call the actual value and check that it raises.

        ``expected`` may be an exception class, a message substring, or an
        exception instance (type and message must match).
        """
        if not callable(self._actual):
            raise AssertionFailure(f"expected {_show(self._actual)} to be a function", actual=self._actual)

        raised: Exception | None = None
        try:
            self._actual()
        except Exception as e:  # noqa: BLE001
            raised = e

        if raised is None:
            passed = False
            detail = "to throw an error"
        elif expected is None:
            passed = True
            detail = "to throw an error"
        elif isinstance(expected, type):
            passed = isinstance(raised, expected)
            detail = f"to throw {expected.__name__} but {type(raised).__name__} was thrown"
        elif isinstance(expected, BaseException):
            passed = type(raised) is type(expected) and str(raised) == str(expected)
            detail = f"to throw {expected!r} but {raised!r} was thrown"
        else:
            passed = str(expected) in str(raised)
            detail = f"to throw an error including {_show(str(expected))} but got {_show(str(raised))}"

        return self._check(
            passed,
            f"expected function {detail}",
            "expected function to not throw an error",
            expected,
        )


def expect(actual: Any) -> Expectation:
    return Expectation(actual)
