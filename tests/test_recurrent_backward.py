"""Tests for the recurrent gradient operator."""
import numpy as np
import pytest

from steprnn import (OpRegistry, PreconditionError, Program, Scope, Tensor,
                     get_device_context, set_flags)


def _set(scope, name, value):
    scope.var(name).get_mutable(Tensor).set(np.asarray(value))


def _get(scope, name):
    return scope.find_var(name).get(Tensor).numpy()


def _run_pair(step, grad, scope, *, inputs, aliases, outputs, out_aliases,
              ex_states=(), states=(), boots=(), params=(),
              out_grads=None, input_grads=None, init_grads=None, param_grads=None,
              reverse=False, is_train=True, grad_is_train=None):
    """Run the forward op, then the gradient op, over *scope*."""
    ctx = get_device_context()
    attrs = {'ex_states': list(ex_states), 'states': list(states),
             'reverse': reverse, 'is_train': is_train,
             'inlink_alias': list(aliases), 'outlink_alias': list(out_aliases)}
    fwd_inputs = {'inputs': list(inputs), 'initial_states': list(boots),
                  'parameters': list(params)}
    scope.var('scopes').get_mutable(list)
    for name in outputs:
        scope.var(name).get_mutable(Tensor)
    OpRegistry.create_op(
        'recurrent', fwd_inputs,
        {'outputs': list(outputs), 'step_scopes': ['scopes']},
        dict(attrs, step_block=step)).run(scope, ctx)

    grad_attrs = dict(attrs, step_block=grad)
    if grad_is_train is not None:
        grad_attrs['is_train'] = grad_is_train
    OpRegistry.create_op(
        'recurrent_grad',
        dict(fwd_inputs, outputs=list(outputs), step_scopes=['scopes'],
             **{'outputs@GRAD': list(out_grads or [n + '@GRAD' for n in outputs])}),
        {'inputs@GRAD': list(input_grads or [n + '@GRAD' for n in inputs]),
         'initial_states@GRAD': list(init_grads or [n + '@GRAD' for n in boots]),
         'parameters@GRAD': list(param_grads or [n + '@GRAD' for n in params])},
        grad_attrs).run(scope, ctx)


# ──────────────────────── Running sum ─────────────────────────────────

def _running_sum_blocks():
    """h = h_pre + x_t, and its differentiated block."""
    prog = Program()
    step = prog.create_block(0)
    step.create_var('x_t')
    step.create_var('h_pre')
    step.append_op('elementwise_add', {'X': ['h_pre'], 'Y': ['x_t']}, {'Out': ['h']})
    grad = prog.create_block(step.idx)
    grad.append_op('elementwise_add_grad',
                   {'X': ['h_pre'], 'Y': ['x_t'], 'Out@GRAD': ['h@GRAD']},
                   {'X@GRAD': ['h_pre@GRAD'], 'Y@GRAD': ['x_t@GRAD']})
    return step, grad


def _running_sum(reverse=False, **kw):
    step, grad = _running_sum_blocks()
    scope = Scope()
    _set(scope, 'x', np.arange(1, 5, dtype=np.float32).reshape(4, 1, 1))
    _set(scope, 'h0', np.zeros((1, 1), np.float32))
    _set(scope, 'out@GRAD', np.ones((4, 1, 1), np.float32))
    _run_pair(step, grad, scope, inputs=['x'], aliases=['x_t'], outputs=['out'],
              out_aliases=['h'], ex_states=['h_pre'], states=['h'], boots=['h0'],
              reverse=reverse, **kw)
    return scope


def test_state_gradient_merge():
    """With all-ones output gradients, input gradients are [4,3,2,1] and dh0 = 4.

    The gradient of h at step t sums the external gradient of out[t] and
    the gradient reaching h_pre at step t+1.
    """
    print("=== Test State Gradient Merge ===")
    scope = _running_sum()
    dx = _get(scope, 'x@GRAD')
    assert dx.shape == (4, 1, 1), f"Expected (4,1,1), got {dx.shape}"
    np.testing.assert_array_equal(dx.ravel(), [4, 3, 2, 1])
    np.testing.assert_array_equal(_get(scope, 'h0@GRAD'), [[4]])
    np.testing.assert_array_equal(_get(scope, 'out@GRAD'), np.ones((4, 1, 1)),
                                  err_msg="the caller's output gradients must not change")
    print("  merge OK")


def test_reverse_traversal():
    """reverse=True: the gradient walk goes 0..L-1 and dx = [1,2,3,4]."""
    print("=== Test Reverse Backward ===")
    scope = _running_sum(reverse=True)
    np.testing.assert_array_equal(_get(scope, 'x@GRAD').ravel(), [1, 2, 3, 4])
    np.testing.assert_array_equal(_get(scope, 'h0@GRAD'), [[4]])
    print("  reverse OK")


def test_backward_requires_training():
    print("=== Test Non-Training Backward ===")
    with pytest.raises(PreconditionError, match="is_train"):
        _running_sum(is_train=False)
    print("  non-training OK")


def test_backward_requires_forward_scopes():
    print("=== Test Missing Forward ===")
    step, grad = _running_sum_blocks()
    scope = Scope()
    _set(scope, 'x', np.ones((2, 1)))
    _set(scope, 'h0', np.zeros(1))
    _set(scope, 'out@GRAD', np.ones((2, 1)))
    scope.var('scopes').get_mutable(list)
    op = OpRegistry.create_op(
        'recurrent_grad',
        {'inputs': ['x'], 'initial_states': ['h0'], 'parameters': [],
         'outputs': ['out'], 'step_scopes': ['scopes'], 'outputs@GRAD': ['out@GRAD']},
        {'inputs@GRAD': ['x@GRAD'], 'initial_states@GRAD': ['h0@GRAD'],
         'parameters@GRAD': []},
        {'ex_states': ['h_pre'], 'states': ['h'], 'step_block': grad,
         'inlink_alias': ['x_t'], 'outlink_alias': ['h']})
    with pytest.raises(PreconditionError):
        op.run(scope, get_device_context())
    assert scope.find_var('x@GRAD') is None
    print("  missing forward OK")


def test_missing_output_gradient():
    print("=== Test Missing Output Gradient ===")
    with pytest.raises(PreconditionError, match="output gradient"):
        step, grad = _running_sum_blocks()
        scope = Scope()
        _set(scope, 'x', np.ones((2, 1)))
        _set(scope, 'h0', np.zeros(1))
        _run_pair(step, grad, scope, inputs=['x'], aliases=['x_t'], outputs=['out'],
                  out_aliases=['h'], ex_states=['h_pre'], states=['h'], boots=['h0'])
    print("  missing output gradient OK")


# ──────────────────────── Identity ────────────────────────────────────

@pytest.mark.parametrize('seq_len', [1, 2, 5])
def test_identity_round_trip(seq_len):
    """For y_t = x_t the input gradient equals the output gradient."""
    print(f"=== Test Identity L={seq_len} ===")
    prog = Program()
    step = prog.create_block(0)
    step.create_var('x_t')
    step.append_op('assign', {'X': ['x_t']}, {'Out': ['y']})
    grad = prog.create_block(step.idx)
    grad.append_op('assign', {'X': ['y@GRAD']}, {'Out': ['x_t@GRAD']})

    rng = np.random.default_rng(seq_len)
    x = rng.standard_normal((seq_len, 3))
    g = rng.standard_normal((seq_len, 3))
    scope = Scope()
    _set(scope, 'x', x)
    _set(scope, 'out@GRAD', g)
    _run_pair(step, grad, scope, inputs=['x'], aliases=['x_t'], outputs=['out'],
              out_aliases=['y'])
    np.testing.assert_array_equal(_get(scope, 'out'), x)
    np.testing.assert_array_equal(_get(scope, 'x@GRAD'), g)
    print("  identity OK")


# ──────────────────────── Parameters ──────────────────────────────────

def _scaled_blocks():
    """y_t = x_t * w, with an unused parameter v."""
    prog = Program()
    step = prog.create_block(0)
    step.create_var('x_t')
    step.append_op('elementwise_mul', {'X': ['x_t'], 'Y': ['w']}, {'Out': ['y']})
    grad = prog.create_block(step.idx)
    grad.append_op('elementwise_mul_grad',
                   {'X': ['x_t'], 'Y': ['w'], 'Out@GRAD': ['y@GRAD']},
                   {'X@GRAD': ['x_t@GRAD'], 'Y@GRAD': ['w@GRAD']})
    return step, grad


def _scaled(seq_len, dw_init=None, dv_init=None):
    step, grad = _scaled_blocks()
    rng = np.random.default_rng(seq_len)
    x = rng.standard_normal((seq_len, 3))
    g = rng.standard_normal((seq_len, 3))
    w = np.array([0.5, -1.0, 2.0])
    scope = Scope()
    _set(scope, 'x', x)
    _set(scope, 'w', w)
    _set(scope, 'v', np.ones(2))
    _set(scope, 'out@GRAD', g)
    if dw_init is not None:
        _set(scope, 'w@GRAD', dw_init)
    if dv_init is not None:
        _set(scope, 'v@GRAD', dv_init)
    _run_pair(step, grad, scope, inputs=['x'], aliases=['x_t'], outputs=['out'],
              out_aliases=['y'], params=['w', 'v'])
    return scope, x, g, w


@pytest.mark.parametrize('seq_len', [1, 2, 5])
def test_param_gradient_accumulation(seq_len):
    """The parameter gradient is the sum of the per-step gradients."""
    print(f"=== Test Param Accumulation L={seq_len} ===")
    scope, x, g, w = _scaled(seq_len, dw_init=np.full(3, 100.0))
    np.testing.assert_allclose(_get(scope, 'w@GRAD'), (g * x).sum(axis=0),
                               err_msg="stale accumulator contents must be cleared")
    np.testing.assert_allclose(_get(scope, 'x@GRAD'), g * w)
    print("  accumulation OK")


def test_untouched_param_keeps_its_accumulator():
    """A parameter the step block never differentiates keeps its previous value."""
    print("=== Test Untouched Param ===")
    scope, *_ = _scaled(3, dv_init=np.array([7.0, 7.0]))
    np.testing.assert_array_equal(_get(scope, 'v@GRAD'), [7.0, 7.0])
    print("  untouched OK")


def test_eager_zero_param_grads():
    """With eager_zero_param_grads every requested accumulator starts at zero."""
    print("=== Test Eager Zero ===")
    set_flags({'eager_zero_param_grads': True})
    try:
        scope, x, g, _ = _scaled(3, dv_init=np.array([7.0, 7.0]))
    finally:
        set_flags({'eager_zero_param_grads': False})
    np.testing.assert_array_equal(_get(scope, 'v@GRAD'), [0.0, 0.0])
    np.testing.assert_allclose(_get(scope, 'w@GRAD'), (g * x).sum(axis=0))
    print("  eager zero OK")


def test_unused_input_gets_zero_gradient():
    """Gradients the step block does not produce are zeros of the input's shape."""
    print("=== Test Unused Input ===")
    step, grad = _running_sum_blocks()
    step.create_var('z_t')
    scope = Scope()
    _set(scope, 'x', np.ones((3, 2)))
    _set(scope, 'z', np.full((3, 4), 9.0))
    _set(scope, 'h0', np.zeros(2))
    _set(scope, 'out@GRAD', np.ones((3, 2)))
    _run_pair(step, grad, scope, inputs=['x', 'z'], aliases=['x_t', 'z_t'],
              outputs=['out'], out_aliases=['h'], ex_states=['h_pre'], states=['h'],
              boots=['h0'])
    dz = _get(scope, 'z@GRAD')
    assert dz.shape == (3, 4), f"Expected (3,4), got {dz.shape}"
    assert not dz.any()
    np.testing.assert_array_equal(_get(scope, 'x@GRAD'), [[3, 3], [2, 2], [1, 1]])
    print("  unused input OK")


def test_state_without_external_gradient():
    """A state that is not an output starts from zero gradient at the last position."""
    print("=== Test Hidden State ===")
    prog = Program()
    step = prog.create_block(0)
    step.create_var('x_t')
    step.create_var('h_pre')
    step.append_op('elementwise_add', {'X': ['h_pre'], 'Y': ['x_t']}, {'Out': ['h']})
    step.append_op('scale', {'X': ['h']}, {'Out': ['y']}, {'scale': 2.0})
    grad = prog.create_block(step.idx)
    grad.append_op('scale', {'X': ['y@GRAD']}, {'Out': ['h@GRAD@RENAME@0']},
                   {'scale': 2.0})
    grad.append_op('sum', {'X': ['h@GRAD', 'h@GRAD@RENAME@0']}, {'Out': ['h@GRAD@MERGED']})
    grad.append_op('elementwise_add_grad',
                   {'X': ['h_pre'], 'Y': ['x_t'], 'Out@GRAD': ['h@GRAD@MERGED']},
                   {'X@GRAD': ['h_pre@GRAD'], 'Y@GRAD': ['x_t@GRAD']})
    scope = Scope()
    _set(scope, 'x', np.ones((3, 1)))
    _set(scope, 'h0', np.zeros(1))
    _set(scope, 'out@GRAD', np.ones((3, 1)))
    _run_pair(step, grad, scope, inputs=['x'], aliases=['x_t'], outputs=['out'],
              out_aliases=['y'], ex_states=['h_pre'], states=['h'], boots=['h0'])
    np.testing.assert_array_equal(_get(scope, 'out').ravel(), [2, 4, 6])
    np.testing.assert_array_equal(_get(scope, 'x@GRAD').ravel(), [6, 4, 2])
    np.testing.assert_array_equal(_get(scope, 'h0@GRAD'), [6])
    print("  hidden state OK")
