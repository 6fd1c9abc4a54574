"""Tests for the enforce helpers and the error hierarchy."""
import pytest

from steprnn import EnforceNotMet, PreconditionError, ShapeMismatchError
from steprnn.errors import enforce, enforce_eq, enforce_not_none


def test_hierarchy():
    print("=== Test Error Hierarchy ===")
    assert issubclass(PreconditionError, EnforceNotMet)
    assert issubclass(ShapeMismatchError, EnforceNotMet)
    assert issubclass(ShapeMismatchError, ValueError), "shape errors are also ValueErrors"
    assert issubclass(EnforceNotMet, RuntimeError)
    print("  hierarchy OK")


def test_enforce_helpers():
    """Helpers format their message lazily and raise the requested class."""
    print("=== Test Enforce ===")
    enforce(True, "never formatted %d")
    with pytest.raises(EnforceNotMet, match="bad 3"):
        enforce(False, "bad %d", 3)

    enforce_eq(2, 2)
    with pytest.raises(PreconditionError, match=r"expected 1 == 2: input 'x'"):
        enforce_eq(1, 2, "input '%s'", 'x', exc=PreconditionError)
    with pytest.raises(EnforceNotMet) as info:
        enforce_eq('a', 'b')
    assert str(info.value) == "expected 'a' == 'b'", f"Unexpected message {info.value}"

    assert enforce_not_none(0) == 0, "falsy values other than None pass through"
    with pytest.raises(ShapeMismatchError, match="missing y"):
        enforce_not_none(None, "missing %s", 'y', exc=ShapeMismatchError)
    print("  enforce OK")
