"""
Pytest configuration and shared fixtures.
"""

import pytest
import torch

from torchserialize.layers import Dense, Sequential


@pytest.fixture
def dense_model():
    """A single dense layer, 3 inputs to 1 output, weights [1, 2, 3], bias 0."""
    model = Sequential()
    layer = Dense(units=1, input_shape=[3])
    model.add(layer)
    layer.set_weights([torch.tensor([[1.0], [2.0], [3.0]]), torch.tensor([0.0])])
    return model

@pytest.fixture
def compiled_model(dense_model):
    """The reference dense model compiled with Adam and mean squared error."""
    dense_model.compile(optimizer="adam", loss="meanSquaredError", metrics=["accuracy"])
    return dense_model

@pytest.fixture
def training_data():
    """Ten repetitions of (x=[1, 2, 3], y=[1])."""
    x = torch.tensor([[1.0, 2.0, 3.0]] * 10)
    y = torch.tensor([[1.0]] * 10)
    return x, y
