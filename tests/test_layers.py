"""
Tests for the model layer: building, training and artifacts.
"""

import asyncio

import numpy as np
import pytest
import torch

from torchserialize.layers import (
    Dense,
    ModelArtifacts,
    Sequential,
    decode_weights,
    encode_weights,
    load_model,
    model_from_artifacts,
)


class TestDense:
    """Tests for the Dense layer."""

    def test_output_shape(self):
        layer = Dense(units=4, input_shape=[3])
        output = layer(torch.randn(5, 3))
        assert output.shape == (5, 4)

    def test_unbuilt_until_input_known(self):
        layer = Dense(units=2)
        assert not layer.built
        Sequential([Dense(3, input_shape=[4]), layer])
        assert layer.built
        assert layer.kernel.shape == (3, 2)

    def test_without_bias(self):
        layer = Dense(units=2, input_shape=[3], use_bias=False)
        assert len(layer.get_weights()) == 1

    def test_set_weights_shape_mismatch(self):
        layer = Dense(units=1, input_shape=[3])
        with pytest.raises(ValueError, match="shape mismatch"):
            layer.set_weights([np.zeros((2, 1)), np.zeros(1)])

    def test_set_weights_count_mismatch(self):
        layer = Dense(units=1, input_shape=[3])
        with pytest.raises(ValueError, match="expects 2 weights"):
            layer.set_weights([np.zeros((3, 1))])

    def test_unknown_activation(self):
        with pytest.raises(ValueError, match="Unknown activation"):
            Dense(units=1, activation="gelu")


class TestSequential:
    """Tests for Sequential models."""

    def test_first_layer_needs_input_shape(self):
        with pytest.raises(ValueError, match="input_shape"):
            Sequential([Dense(2)])

    def test_predict(self, dense_model):
        assert dense_model.predict([[1.0, 2.0, 3.0]]).item() == 14.0

    def test_fit_requires_compile(self, dense_model, training_data):
        with pytest.raises(RuntimeError, match="compile"):
            dense_model.fit(*training_data)

    def test_fit_reduces_loss(self, dense_model, training_data):
        dense_model.compile(optimizer="adam", loss="meanSquaredError", metrics=["mae"])
        before = dense_model.evaluate(*training_data)
        history = dense_model.fit(*training_data, epochs=5)
        after = dense_model.evaluate(*training_data)

        assert history.epoch == [0, 1, 2, 3, 4]
        assert set(history.history) == {"loss", "mae"}
        assert after["loss"] < before["loss"]

    def test_fit_sample_count_mismatch(self, compiled_model):
        with pytest.raises(ValueError, match="sample counts"):
            compiled_model.fit(torch.zeros(4, 3), torch.zeros(3, 1))

    def test_unknown_loss(self, dense_model):
        with pytest.raises(ValueError, match="Unknown loss"):
            dense_model.compile(optimizer="sgd", loss="hinge")

    def test_weights_round_trip(self, dense_model):
        other = Sequential([Dense(1, input_shape=[3])])
        other.set_weights(dense_model.get_weights())
        assert other.predict([[1.0, 2.0, 3.0]]).item() == 14.0

    def test_config_round_trip(self):
        model = Sequential([Dense(4, input_shape=[2], activation="tanh"), Dense(1)], name="net")
        rebuilt = Sequential.from_config(model.get_config())

        assert rebuilt.get_config() == model.get_config()


class TestArtifacts:
    """Tests for artifacts and load_model."""

    def test_encode_decode_weights(self, dense_model):
        specs, data = encode_weights(dense_model.named_parameters())

        assert [spec["name"] for spec in specs] == ["layers.0.kernel", "layers.0.bias"]
        assert specs[0] == {"name": "layers.0.kernel", "shape": [3, 1], "dtype": "float32"}

        weights = decode_weights(specs, data)
        np.testing.assert_array_equal(weights["layers.0.kernel"], [[1.0], [2.0], [3.0]])
        np.testing.assert_array_equal(weights["layers.0.bias"], [0.0])

    def test_truncated_weight_data(self, dense_model):
        specs, data = encode_weights(dense_model.named_parameters())
        with pytest.raises(ValueError, match="too short"):
            decode_weights(specs, data[:-4])

    def test_model_from_artifacts(self, dense_model):
        model = model_from_artifacts(dense_model.to_artifacts())

        assert not model.is_compiled
        assert model.predict([[1.0, 2.0, 3.0]]).item() == 14.0

    def test_missing_topology(self):
        with pytest.raises(ValueError, match="topology"):
            model_from_artifacts(ModelArtifacts())

    def test_save_and_load_through_handler(self, dense_model):
        class MemoryHandler:
            async def save(self, model_artifacts):
                self.artifacts = model_artifacts
                return "saved"

            async def load(self):
                return self.artifacts

        handler = MemoryHandler()
        assert asyncio.run(dense_model.save(handler)) == "saved"

        loaded = asyncio.run(load_model(handler))
        assert torch.equal(loaded.predict(torch.eye(3)), dense_model.predict(torch.eye(3)))
