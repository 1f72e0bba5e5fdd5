"""
Tests for the serialize / deserialize round trip.
"""

import asyncio
import json

import pytest
import torch

from torchserialize.codec import deserialize, serialize
from torchserialize.errors import (
    MalformedRecordError,
    MissingModelError,
    UnknownOptimizerClassError,
)
from torchserialize.layers import Dense, Sequential
from torchserialize.optimizer import SGD, Adam


REFERENCE_INPUT = [[1.0, 2.0, 3.0]]


def round_trip(model):
    return asyncio.run(deserialize(asyncio.run(serialize(model))))


class TestRecordFormat:
    """Tests for the shape of the serialized record."""

    def test_record_has_model_and_training_info(self, compiled_model):
        record = json.loads(asyncio.run(serialize(compiled_model)))

        assert set(record) == {"model", "trainingInfo"}
        assert isinstance(record["model"], dict)
        assert isinstance(record["trainingInfo"], str)

    def test_training_info_is_double_encoded(self, compiled_model):
        record = json.loads(asyncio.run(serialize(compiled_model)))
        info = json.loads(record["trainingInfo"])

        assert info["optimizerName"] == "Adam"
        assert info["loss"] == "meanSquaredError"
        assert info["metrics"] == ["accuracy"]

    def test_uncompiled_model_has_null_training_info(self, dense_model):
        record = json.loads(asyncio.run(serialize(dense_model)))
        assert json.loads(record["trainingInfo"]) is None


class TestRoundTrip:
    """Tests that a deserialized model behaves like the original."""

    def test_reference_model_predicts_14(self, compiled_model):
        loaded = round_trip(compiled_model)

        assert compiled_model.predict(REFERENCE_INPUT).item() == 14.0
        assert loaded.predict(REFERENCE_INPUT).item() == 14.0

    def test_predictions_are_bit_identical(self):
        torch.manual_seed(0)
        model = Sequential([
            Dense(8, input_shape=[4], activation="relu"),
            Dense(3, activation="softmax"),
        ])
        model.compile(optimizer="sgd", loss="mse")
        x = torch.randn(16, 4)

        loaded = round_trip(model)

        assert torch.equal(model.predict(x), loaded.predict(x))

    def test_uncompiled_model_round_trip(self, dense_model):
        loaded = round_trip(dense_model)

        assert not loaded.is_compiled
        assert loaded.predict(REFERENCE_INPUT).item() == 14.0

    def test_optimizer_class_and_hyperparameters_preserved(self, dense_model):
        dense_model.compile(
            optimizer=SGD(learning_rate=0.05, momentum=0.9, nesterov=True),
            loss={"class_name": "huber", "config": {"delta": 0.5}},
            metrics=["mae"],
        )
        loaded = round_trip(dense_model)

        assert type(loaded.optimizer) is SGD
        assert loaded.optimizer.get_hyperparameters() == dense_model.optimizer.get_hyperparameters()
        assert loaded.loss == {"class_name": "huber", "config": {"delta": 0.5}}
        assert loaded.metrics == ["mae"]


class TestResumedTraining:
    """Tests that deserialized models keep training where the original left off."""

    def test_fit_after_round_trip_matches_original(self, compiled_model, training_data):
        x, y = training_data
        loaded = round_trip(compiled_model)

        compiled_model.fit(x, y)
        loaded.fit(x, y)

        original = compiled_model.predict(REFERENCE_INPUT)
        resumed = loaded.predict(REFERENCE_INPUT)
        assert original.item() != 14.0
        assert resumed.item() != 14.0
        assert torch.equal(original, resumed)

    def test_optimizer_state_survives_mid_training(self, dense_model, training_data):
        x, y = training_data
        dense_model.compile(optimizer=Adam(learning_rate=0.1), loss="meanSquaredError")
        dense_model.fit(x, y, epochs=3)

        loaded = round_trip(dense_model)
        assert loaded.optimizer.get_state() == dense_model.optimizer.get_state()

        dense_model.fit(x, y, epochs=2)
        loaded.fit(x, y, epochs=2)
        assert torch.equal(dense_model.predict(x), loaded.predict(x))

    def test_momentum_state_survives_mid_training(self, dense_model, training_data):
        x, y = training_data
        dense_model.compile(optimizer=SGD(learning_rate=0.001, momentum=0.9), loss="mse")
        dense_model.fit(x, y, epochs=2)

        loaded = round_trip(dense_model)
        dense_model.fit(x, y)
        loaded.fit(x, y)

        assert torch.equal(dense_model.predict(x), loaded.predict(x))


class TestFaults:
    """Tests for malformed and unresolvable records."""

    def test_invalid_json(self):
        with pytest.raises(MalformedRecordError):
            asyncio.run(deserialize("not json"))

    def test_missing_fields(self):
        with pytest.raises(MalformedRecordError):
            asyncio.run(deserialize(json.dumps({"model": {}})))

    def test_malformed_training_info(self, compiled_model):
        record = json.loads(asyncio.run(serialize(compiled_model)))
        record["trainingInfo"] = "{broken"

        with pytest.raises(MalformedRecordError):
            asyncio.run(deserialize(json.dumps(record)))

    def test_null_model(self):
        record = json.dumps({"model": None, "trainingInfo": "null"})

        with pytest.raises(MissingModelError):
            asyncio.run(deserialize(record))

    def test_unknown_optimizer_class(self, compiled_model):
        record = json.loads(asyncio.run(serialize(compiled_model)))
        info = json.loads(record["trainingInfo"])
        info["optimizerName"] = "NeverRegistered"
        record["trainingInfo"] = json.dumps(info)

        with pytest.raises(UnknownOptimizerClassError) as exc_info:
            asyncio.run(deserialize(json.dumps(record)))
        assert exc_info.value.class_name == "NeverRegistered"

    def test_extra_record_fields(self, compiled_model):
        record = json.loads(asyncio.run(serialize(compiled_model)))
        record["version"] = 2

        with pytest.raises(MalformedRecordError, match="exactly"):
            asyncio.run(deserialize(json.dumps(record)))

    @pytest.mark.parametrize(
        "field, value",
        [
            ("optimizerConfig", None),
            ("optimizerConfig", {"bogus": 1}),
            ("optimizerName", ["Adam"]),
            ("metrics", "accuracy"),
            ("loss", 3),
        ],
    )
    def test_wrongly_typed_training_info(self, compiled_model, field, value):
        record = json.loads(asyncio.run(serialize(compiled_model)))
        info = json.loads(record["trainingInfo"])
        info[field] = value
        record["trainingInfo"] = json.dumps(info)

        with pytest.raises(MalformedRecordError):
            asyncio.run(deserialize(json.dumps(record)))

    @pytest.mark.parametrize(
        "topology",
        [{"config": {}}, {"class_name": "Sequential"}, ["Sequential"], {"class_name": 1, "config": {}}],
    )
    def test_wrongly_shaped_topology(self, compiled_model, topology):
        record = json.loads(asyncio.run(serialize(compiled_model)))
        record["model"]["modelTopology"] = topology

        with pytest.raises(MalformedRecordError):
            asyncio.run(deserialize(json.dumps(record)))
