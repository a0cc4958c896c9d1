import numpy as np
import pytest

from backpropnet.training.losses import REGISTRY, loss_for_strategy


def test_least_squares_is_half_squared_error():
    loss = REGISTRY.get("least_squares")
    assert loss(np.array([1.0, 2.0]), np.array([0.0, 0.0])) == pytest.approx(2.5)


def test_log_likelihood_of_one_hot_target():
    loss = REGISTRY.get("log_likelihood")
    assert loss(np.array([0.25, 0.75]), np.array([0.0, 1.0])) == pytest.approx(-np.log(0.75))


def test_strategy_losses():
    assert loss_for_strategy("autoencoder_least_squares").name == "least_squares"
    assert loss_for_strategy("softmax_log_likelihood").name == "log_likelihood"
    with pytest.raises(KeyError):
        loss_for_strategy("hinge")
    with pytest.raises(KeyError):
        REGISTRY.get("hinge")
