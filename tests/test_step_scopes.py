"""Tests for the step-scope sequencer."""
import pytest

from steprnn import PreconditionError, Scope, StepScopes


def test_forward_training():
    """Training forward creates seq_len scopes and walks them 0..L-1."""
    print("=== Test Forward Training ===")
    parent = Scope()
    scopes = []
    seq = StepScopes(parent, scopes, is_train=True, seq_len=4)
    assert len(scopes) == 4, f"Expected 4 scopes, got {len(scopes)}"
    assert all(s.parent is parent for s in scopes)
    assert seq.counter == 0
    assert seq.current_scope() is scopes[0]
    seq.advance()
    assert seq.current_scope() is scopes[1]
    assert seq.adjacent_scope() is scopes[0]
    for _ in range(3):
        seq.advance()
    assert seq.counter == 4, "terminal forward cursor is seq_len"
    print("  forward training OK")


def test_forward_inference_ping_pong():
    """Without training only two scopes exist, reused modulo 2."""
    print("=== Test Ping-Pong ===")
    scopes = []
    seq = StepScopes(Scope(), scopes, is_train=False, seq_len=5)
    assert len(scopes) == 2, f"Expected 2 scopes, got {len(scopes)}"
    visited = []
    for _ in range(5):
        visited.append(seq.current_scope())
        seq.advance()
    assert visited[0] is visited[2] is visited[4]
    assert visited[1] is visited[3]
    assert visited[0] is not visited[1]
    print("  ping-pong OK")


def test_backward_walk():
    """Backward starts at seq_len-1, adjacent is cursor+1."""
    print("=== Test Backward ===")
    parent = Scope()
    scopes = []
    StepScopes(parent, scopes, is_train=True, seq_len=3)
    seq = StepScopes(parent, scopes, is_train=True, seq_len=3, is_backward=True)
    assert seq.counter == 2
    assert seq.current_scope() is scopes[2]
    seq.advance()
    assert seq.current_scope() is scopes[1]
    assert seq.adjacent_scope() is scopes[2]
    seq.advance()
    seq.advance()
    assert seq.counter == -1, "terminal backward cursor is -1"
    print("  backward OK")


def test_preconditions():
    print("=== Test Preconditions ===")
    parent = Scope()
    with pytest.raises(PreconditionError, match="is_train"):
        StepScopes(parent, [], is_train=False, seq_len=2, is_backward=True)

    scopes = [parent.new_scope()]
    with pytest.raises(PreconditionError):
        StepScopes(parent, scopes, is_train=True, seq_len=2)
    assert len(scopes) == 1, "a rejected forward run must not touch the list"

    with pytest.raises(PreconditionError):
        StepScopes(parent, [], is_train=True, seq_len=2, is_backward=True)
    print("  preconditions OK")
