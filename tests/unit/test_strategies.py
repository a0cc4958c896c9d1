import numpy as np
import pytest

from backpropnet.core.activations import Activation
from backpropnet.core.errors import PreconditionError, ShapeMismatchError
from backpropnet.core.forward import run
from backpropnet.core.gradient import SKIPPED, AnnGradient
from backpropnet.core.strategies import (
    STRATEGIES,
    SoftmaxLogLikelihood,
    backpropagate_autoencoder_least_squares,
    backpropagate_least_squares,
    backpropagate_softmax_log_likelihood,
    build_strategy,
)
from backpropnet.core.types import Example
from backpropnet.models import DenseAnnModel, LayerSpec, ModelConfig


def _pinned_model():
    W0 = np.array([[0.5, -0.5], [0.25, 0.75], [0.0, 0.0]])
    W1 = np.array([[1.0], [-1.0], [0.5]])
    return DenseAnnModel.from_weights([W0, W1], ["sigmoid", "linear"])


def _model(dims, activations, seed=0, scale=0.5):
    layers = [LayerSpec(size, act) for size, act in zip(dims[1:], activations)]
    model = DenseAnnModel(ModelConfig(dims[0], layers), seed=seed, init_scale=scale)
    rng = np.random.default_rng(seed + 100)
    for W in model.weights:
        W[-1, :] = rng.normal(0.0, 0.1, size=W.shape[1])
    return model


def _numeric_gradient(model, loss, eps=1e-6):
    """Central differences of ``-loss`` with respect to every weight."""

    grads = []
    for W in model.weights:
        G = np.zeros_like(W)
        for idx in np.ndindex(W.shape):
            original = W[idx]
            W[idx] = original + eps
            plus = loss()
            W[idx] = original - eps
            minus = loss()
            W[idx] = original
            G[idx] = -(plus - minus) / (2 * eps)
        grads.append(G)
    return grads


def _backprop(fn, model, example, **kwargs):
    result = run(model, example.inputs)
    return fn(model, example, result.outputs, result.sums, **kwargs)


def test_pinned_least_squares_gradient():
    model = _pinned_model()
    gradient = _backprop(backpropagate_least_squares, model, Example([1.0, 0.0], [1.0]))

    np.testing.assert_allclose(
        gradient.matrix(1),
        [[0.15877775880226166], [0.096303578794029149], [0.25508133759629081]],
    )
    np.testing.assert_allclose(
        gradient.matrix(0),
        [[0.05994506124847649, -0.05994506124847649], [0.0, 0.0], [0.05994506124847649, -0.05994506124847649]],
    )
    assert gradient.input_gradient is None


def test_gradient_shapes_match_weights():
    model = _model([3, 5, 4, 2], ["tanh", "sigmoid", "linear"])
    gradient = _backprop(backpropagate_least_squares, model, Example(np.ones(3), np.zeros(2)))
    assert len(gradient) == model.layer_count()
    for i in range(model.layer_count()):
        assert gradient.matrix(i).shape == model.layer(i).shape


def test_zero_residual_gives_zero_output_gradient():
    model = _model([2, 3, 2], ["tanh", "linear"])
    x = np.array([0.3, -0.7])
    target = run(model, x).prediction.copy()
    gradient = _backprop(backpropagate_least_squares, model, Example(x, target))
    np.testing.assert_array_equal(gradient.matrix(1), np.zeros((4, 2)))


def test_least_squares_matches_finite_differences():
    model = _model([3, 4, 2], ["tanh", "linear"], seed=2)
    example = Example([0.2, -0.4, 0.9], [0.5, -1.0])

    def loss():
        out = run(model, example.inputs).prediction
        return 0.5 * np.sum((example.targets - out) ** 2)

    gradient = _backprop(backpropagate_least_squares, model, example)
    for got, want in zip(gradient.matrices(), _numeric_gradient(model, loss)):
        np.testing.assert_allclose(got, want, rtol=1e-5, atol=1e-8)


def test_target_length_must_match_output():
    model = _pinned_model()
    with pytest.raises(ShapeMismatchError):
        _backprop(backpropagate_least_squares, model, Example([1.0, 0.0], [1.0, 0.0]))


def test_least_squares_rejects_softmax_layer():
    model = _model([2, 3], ["softmax"])
    with pytest.raises(PreconditionError):
        _backprop(backpropagate_least_squares, model, Example([1.0, 0.0], [1.0, 0.0, 0.0]))


def test_autoencoder_gradient_is_tied_and_skips_early_layers():
    model = _model([4, 5, 3, 5], ["tanh", "sigmoid", "sigmoid"], seed=4)
    x = np.array([0.1, 0.9, -0.3, 0.4])
    gradient = _backprop(backpropagate_autoencoder_least_squares, model, Example(x, run(model, x).outputs[0] * 0.5))

    assert gradient.slots[0] is SKIPPED
    last = gradient.matrix(2)
    second_last = gradient.matrix(1)
    assert last.shape == (4, 5)
    assert second_last.shape == (6, 3)
    np.testing.assert_array_equal(last[:-1, :], second_last[:-1, :].T)


def test_autoencoder_tie_sums_both_sides():
    model = _model([3, 2, 3], ["sigmoid", "sigmoid"], seed=6)
    example = Example([1.0, 0.0, 0.0], [1.0, 0.0, 0.0])
    plain = _backprop(backpropagate_least_squares, model, example)
    tied = _backprop(backpropagate_autoencoder_least_squares, model, example)

    expected = plain.matrix(1)[:-1, :] + plain.matrix(0)[:-1, :].T
    np.testing.assert_allclose(tied.matrix(1)[:-1, :], expected)
    np.testing.assert_allclose(tied.matrix(0)[:-1, :], expected.T)
    np.testing.assert_allclose(tied.matrix(1)[-1, :], plain.matrix(1)[-1, :])
    np.testing.assert_allclose(tied.matrix(0)[-1, :], plain.matrix(0)[-1, :])


def test_autoencoder_preconditions():
    single = _model([3, 3], ["sigmoid"])
    with pytest.raises(PreconditionError):
        _backprop(backpropagate_autoencoder_least_squares, single, Example(np.ones(3), np.ones(3)))

    mismatched = _model([3, 2, 4], ["sigmoid", "sigmoid"])
    with pytest.raises(PreconditionError):
        _backprop(backpropagate_autoencoder_least_squares, mismatched, Example(np.ones(3), np.ones(4)))


def _softmax_model(seed=1):
    return _model([3, 4, 3], ["tanh", "softmax"], seed=seed)


def test_softmax_log_likelihood_matches_finite_differences():
    model = _softmax_model()
    example = Example([0.5, -0.2, 0.8], [0.0, 1.0, 0.0])
    lambdas = [0.01, 0.02]

    def loss():
        out = run(model, example.inputs).prediction
        penalty = sum(0.5 * lam * np.sum(W**2) for lam, W in zip(lambdas, model.weights))
        return -np.sum(example.targets * np.log(out)) + penalty

    gradient = _backprop(backpropagate_softmax_log_likelihood, model, example, l2_lambdas=lambdas)
    for got, want in zip(gradient.matrices(), _numeric_gradient(model, loss)):
        np.testing.assert_allclose(got, want, rtol=1e-5, atol=1e-8)


def test_input_gradient_matches_finite_differences():
    model = _softmax_model(seed=3)
    x = np.array([0.3, 0.1, -0.6])
    targets = np.array([1.0, 0.0, 0.0])
    gradient = _backprop(backpropagate_softmax_log_likelihood, model, Example(x, targets))

    eps = 1e-6
    numeric = np.zeros(3)
    for i in range(3):
        up, down = x.copy(), x.copy()
        up[i] += eps
        down[i] -= eps
        plus = -np.sum(targets * np.log(run(model, up).prediction))
        minus = -np.sum(targets * np.log(run(model, down).prediction))
        numeric[i] = -(plus - minus) / (2 * eps)

    assert gradient.input_gradient.shape == (4,)
    np.testing.assert_allclose(gradient.input_gradient[:-1], numeric, rtol=1e-5, atol=1e-8)


def test_input_l2_penalty_skips_bias_entry():
    model = _softmax_model()
    example = Example([0.5, -0.2, 0.8], [0.0, 0.0, 1.0])
    plain = _backprop(backpropagate_softmax_log_likelihood, model, example, l2_lambdas=[0.0, 0.0])
    penalised = _backprop(backpropagate_softmax_log_likelihood, model, example, l2_lambdas=[0.0, 0.0, 0.5])
    np.testing.assert_allclose(
        penalised.input_gradient[:-1], plain.input_gradient[:-1] - 0.5 * example.inputs
    )
    assert penalised.input_gradient[-1] == plain.input_gradient[-1]


def test_softmax_output_layer_matches_least_squares_without_l2():
    model = _softmax_model()
    example = Example([0.5, -0.2, 0.8], [0.0, 1.0, 0.0])
    result = run(model, example.inputs)
    softmax = backpropagate_softmax_log_likelihood(
        model, example, result.outputs, result.sums, l2_lambdas=[0.0, 0.0]
    )
    linear_twin = DenseAnnModel.from_weights(model.weights, ["tanh", "linear"])
    plain = backpropagate_least_squares(linear_twin, example, result.outputs, result.sums)
    np.testing.assert_allclose(softmax.matrix(1), plain.matrix(1))


def test_l2_moves_non_bias_entries_towards_minus_lambda_weight():
    model = _softmax_model()
    x = np.array([0.5, -0.2, 0.8])
    settled = Example(x, run(model, x).prediction.copy())
    lambdas = [0.0, 0.1, 0.5, 2.0]

    gradients = [
        _backprop(backpropagate_softmax_log_likelihood, model, settled, l2_lambdas=[0.0, lam])
        for lam in lambdas
    ]
    W = model.layer(1)
    for lam, gradient in zip(lambdas, gradients):
        np.testing.assert_allclose(gradient.matrix(1), -lam * W, atol=1e-12)

    example = Example(x, [1.0, 0.0, 0.0])
    base = _backprop(backpropagate_softmax_log_likelihood, model, example, l2_lambdas=[0.0, 0.0])
    for lam in lambdas[1:]:
        shifted = _backprop(backpropagate_softmax_log_likelihood, model, example, l2_lambdas=[lam, 0.0])
        np.testing.assert_allclose(shifted.matrix(0) - base.matrix(0), -lam * model.layer(0), atol=1e-12)


def test_softmax_preconditions():
    model = _softmax_model()
    example = Example([0.5, -0.2, 0.8], [0.0, 1.0, 0.0])
    with pytest.raises(ValueError):
        _backprop(backpropagate_softmax_log_likelihood, model, example, l2_lambdas=[0.1])

    sigmoid_out = _model([3, 4, 3], ["tanh", "sigmoid"])
    with pytest.raises(PreconditionError):
        _backprop(backpropagate_softmax_log_likelihood, sigmoid_out, example)


class _UnbiasedModel:
    """Model whose only layer has no bias row."""

    def __init__(self):
        self.W = np.array([[1.0, 0.0], [0.0, 1.0]])

    def layer_count(self):
        return 1

    def layer(self, index):
        return self.W

    def activation_of_layer(self, index):
        return Activation.SOFTMAX

    def update(self, gradient, learning_rate):  # pragma: no cover - unused
        raise AssertionError

    def post_process_gradient(self, gradient):  # pragma: no cover - unused
        raise AssertionError


def test_unbiased_layer_is_rejected():
    model = _UnbiasedModel()
    example = Example([1.0, 0.0], [1.0, 0.0])
    outputs = [np.array([0.5, 0.5])]
    sums = [np.array([0.0, 0.0])]
    with pytest.raises(PreconditionError):
        backpropagate_softmax_log_likelihood(model, example, outputs, sums)


def test_reuse_writes_into_existing_matrices():
    model = _softmax_model()
    example = Example([0.5, -0.2, 0.8], [0.0, 1.0, 0.0])
    fresh = _backprop(backpropagate_softmax_log_likelihood, model, example)
    reuse = AnnGradient.zeros_like(model)
    buffers = reuse.matrices()
    reused = _backprop(backpropagate_softmax_log_likelihood, model, example, reuse=reuse)
    for buffer, got, want in zip(buffers, reused.matrices(), fresh.matrices()):
        assert got is buffer
        np.testing.assert_allclose(got, want)

    with pytest.raises(ShapeMismatchError):
        _backprop(
            backpropagate_softmax_log_likelihood,
            model,
            example,
            reuse=AnnGradient.of([np.zeros((2, 2)), np.zeros((5, 3))]),
        )


def test_post_processor_sees_finished_gradient():
    model = _softmax_model()
    seen = []
    model.gradient_post_processor = seen.append
    gradient = _backprop(backpropagate_softmax_log_likelihood, model, Example([0.5, -0.2, 0.8], [0.0, 1.0, 0.0]))
    assert seen == [gradient]
    assert seen[0].input_gradient is not None


def test_strategy_objects_and_registry():
    assert set(STRATEGIES) == {
        "least_squares",
        "autoencoder_least_squares",
        "softmax_log_likelihood",
    }
    model = _softmax_model()
    example = Example([0.5, -0.2, 0.8], [0.0, 1.0, 0.0])
    strategy = build_strategy("softmax_log_likelihood", l2_lambdas=[0.01, 0.01])
    direct = _backprop(backpropagate_softmax_log_likelihood, model, example, l2_lambdas=[0.01, 0.01])
    via_strategy = strategy.backward(model, example, run(model, example.inputs))
    for got, want in zip(via_strategy.matrices(), direct.matrices()):
        np.testing.assert_allclose(got, want)

    with pytest.raises(ValueError):
        build_strategy("hinge")
    with pytest.raises(ValueError):
        build_strategy("least_squares", l2_lambdas=[0.1])


def test_reusing_strategy_hands_out_independent_copies():
    model = _softmax_model()
    strategy = SoftmaxLogLikelihood(reuse_buffers=True)
    first_example = Example([0.5, -0.2, 0.8], [0.0, 1.0, 0.0])
    second_example = Example([-0.5, 0.4, 0.1], [1.0, 0.0, 0.0])
    first = strategy.backward(model, first_example, run(model, first_example.inputs))
    kept = first.matrix(0).copy()
    second = strategy.backward(model, second_example, run(model, second_example.inputs))
    np.testing.assert_array_equal(first.matrix(0), kept)
    assert second.matrix(0) is not first.matrix(0)
