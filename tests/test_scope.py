"""Tests for Variable / Scope: local creation, fall-through lookup, ownership."""
import gc

import pytest

from steprnn import EnforceNotMet, Scope, Tensor, global_scope


def test_var_is_local_find_or_create():
    """var() creates in the scope itself, even when a parent has the name."""
    print("=== Test var() ===")
    parent = Scope()
    pv = parent.var('x')
    kid = parent.new_scope()
    assert kid.find_var('x') is pv, "lookup must fall through to the parent"
    kv = kid.var('x')
    assert kv is not pv, "var() must create locally"
    assert kid.var('x') is kv, "second var() must return the same variable"
    assert kid.find_var('x') is kv, "local variable must shadow the parent's"
    assert kid.find_local_var('y') is None
    print("  var OK")


def test_find_scope_and_names():
    print("=== Test find_scope ===")
    root = Scope()
    root.var('a')
    mid = root.new_scope()
    mid.var('b')
    leaf = mid.new_scope()
    leaf.var('c')
    assert leaf.find_scope('a') is root
    assert leaf.find_scope('b') is mid
    assert leaf.find_scope('zzz') is None
    assert 'a' in leaf and 'zzz' not in leaf
    assert root.all_names() == {'a'}
    assert root.all_names(recursive=True) == {'a', 'b', 'c'}
    leaf.erase_vars(['c', 'missing'])
    assert leaf.local_var_names() == []
    print("  find_scope OK")


def test_variable_typing():
    """A variable holds one value type; asking for another fails."""
    print("=== Test Variable ===")
    s = Scope()
    v = s.var('scopes')
    assert not v.is_initialized()
    lst = v.get_mutable(list)
    assert v.is_type(list) and v.get(list) is lst
    with pytest.raises(EnforceNotMet):
        v.get_mutable(Tensor)
    with pytest.raises(EnforceNotMet):
        s.var('empty').get(Tensor)
    assert isinstance(s.var('t').get_tensor(), Tensor)
    print("  Variable OK")


def test_parent_owns_kids():
    """Children are owned by the parent; the back-reference is weak."""
    print("=== Test Ownership ===")
    parent = Scope()
    kid = parent.new_scope()
    assert kid.parent is parent
    assert parent.kids == (kid,)
    parent.delete_scope(kid)
    assert parent.kids == ()
    with pytest.raises(EnforceNotMet):
        parent.delete_scope(kid)

    orphan = Scope().new_scope()
    gc.collect()
    assert orphan.parent is None, "a kid must not keep its parent alive"

    parent.new_scope()
    parent.new_scope()
    parent.drop_kids()
    assert parent.kids == ()
    print("  ownership OK")


def test_temp_vars_are_unique():
    print("=== Test Temp Vars ===")
    s = Scope()
    n1, v1 = s.new_temp_var()
    n2, v2 = s.new_temp_var()
    assert n1 != n2 and v1 is not v2
    assert s.find_local_var(n1) is v1
    assert global_scope() is global_scope()
    print("  temp vars OK")
