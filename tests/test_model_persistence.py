"""
test_model_persistence.py
~~~~~~~~~~~~~~~~~~~~~~~~~~

Unit tests for SQLite-based network persistence.
"""

import os
import sqlite3

import numpy as np
import pytest

from neuron.net import NeuralNet
from neuron.model_persistence import (
    save_network,
    load_network,
    list_saved_networks,
    delete_network,
    get_network_metadata,
    delete_old_networks,
    ModelDatabase
)


@pytest.fixture
def temp_db_dir(tmp_path):
    """Create a temporary directory for database storage."""
    db_dir = tmp_path / "test_models"
    db_dir.mkdir()
    return str(db_dir)


@pytest.fixture
def simple_network():
    """Create a network with 3 sensors and 2 actions."""
    return NeuralNet.random(
        ["sensor 1", "sensor 2", "sensor 3"],
        ["action 1", "action 2"],
        np.random.default_rng(0)
    )


def age_network(db_dir: str, network_id: str, modifier: str) -> None:
    """Move a network's creation time back, e.g. modifier='-3 days'."""
    conn = sqlite3.connect(os.path.join(db_dir, "networks.db"))
    cursor = conn.cursor()
    cursor.execute('''
        UPDATE networks
        SET created_at = datetime('now', ?)
        WHERE network_id = ?
    ''', (modifier, network_id))
    conn.commit()
    conn.close()


@pytest.mark.unit
class TestModelPersistence:
    """Test basic model persistence operations."""

    def test_save_network_creates_database(self, simple_network, temp_db_dir):
        """Test that saving a network creates the database file."""
        success = save_network(simple_network, "test_network_1", model_dir=temp_db_dir)

        assert success is True
        assert os.path.exists(f"{temp_db_dir}/networks.db")

    def test_save_network_with_metadata(self, simple_network, temp_db_dir):
        """Test that network metadata is saved correctly."""
        save_network(
            simple_network,
            "child_network",
            model_dir=temp_db_dir,
            parent_id="parent_network"
        )

        metadata = get_network_metadata("child_network", temp_db_dir)
        assert metadata is not None
        assert metadata['network_id'] == "child_network"
        assert metadata['sensors'] == ["sensor 1", "sensor 2", "sensor 3"]
        assert metadata['actions'] == ["action 1", "action 2"]
        assert metadata['front_shape'] == [2, 3]
        assert metadata['back_shape'] == [2, 2]
        assert metadata['parent_id'] == "parent_network"

    def test_load_network_returns_equal_network(self, simple_network, temp_db_dir):
        """Test that a loaded network matches the saved one gene for gene."""
        save_network(simple_network, "test_network_2", model_dir=temp_db_dir)
        loaded_network = load_network("test_network_2", temp_db_dir)

        assert isinstance(loaded_network, NeuralNet)
        assert loaded_network == simple_network

    def test_stored_blob_is_binary_format(self, simple_network, temp_db_dir):
        """Test that the database keeps the network's binary save format."""
        save_network(simple_network, "blob_test", model_dir=temp_db_dir)

        conn = sqlite3.connect(os.path.join(temp_db_dir, "networks.db"))
        row = conn.execute(
            'SELECT network_data FROM networks WHERE network_id = ?',
            ("blob_test",)
        ).fetchone()
        conn.close()

        assert row[0] == simple_network.to_bytes()

    def test_load_nonexistent_network(self, temp_db_dir):
        """Test that loading a non-existent network returns None."""
        assert load_network("nonexistent", temp_db_dir) is None

    def test_load_corrupt_network(self, simple_network, temp_db_dir):
        """Test that an undecodable blob loads as None instead of raising."""
        save_network(simple_network, "corrupt", model_dir=temp_db_dir)

        conn = sqlite3.connect(os.path.join(temp_db_dir, "networks.db"))
        conn.execute(
            'UPDATE networks SET network_data = ? WHERE network_id = ?',
            (b'\x00\x10garbage', "corrupt")
        )
        conn.commit()
        conn.close()

        assert load_network("corrupt", temp_db_dir) is None

    @pytest.mark.parametrize("network_id", ["", None, 42])
    def test_invalid_network_id(self, simple_network, temp_db_dir, network_id):
        """Test that ids must be non-empty strings."""
        assert save_network(simple_network, network_id, model_dir=temp_db_dir) is False
        assert load_network(network_id, temp_db_dir) is None
        assert delete_network(network_id, temp_db_dir) is False
        assert get_network_metadata(network_id, temp_db_dir) is None

    def test_list_saved_networks_empty(self, temp_db_dir):
        """Test listing networks when database is empty."""
        assert list_saved_networks(temp_db_dir) == []

    def test_list_saved_networks(self, simple_network, temp_db_dir):
        """Test that listing networks returns correct metadata."""
        save_network(simple_network, "net1", model_dir=temp_db_dir)
        save_network(simple_network, "net2", model_dir=temp_db_dir, parent_id="net1")

        networks = list_saved_networks(temp_db_dir)

        assert len(networks) == 2
        by_id = {net['network_id']: net for net in networks}
        assert by_id["net1"]['parent_id'] is None
        assert by_id["net2"]['parent_id'] == "net1"
        for net in networks:
            assert 'created_at' in net
            assert 'updated_at' in net

    def test_delete_network_success(self, simple_network, temp_db_dir):
        """Test successful network deletion."""
        save_network(simple_network, "delete_test", model_dir=temp_db_dir)
        assert load_network("delete_test", temp_db_dir) is not None

        assert delete_network("delete_test", temp_db_dir) is True
        assert load_network("delete_test", temp_db_dir) is None

    def test_delete_nonexistent_network(self, temp_db_dir):
        """Test that deleting a non-existent network returns False."""
        ModelDatabase(db_path=f'{temp_db_dir}/networks.db')

        assert delete_network("nonexistent", temp_db_dir) is False

    def test_update_network(self, simple_network, temp_db_dir):
        """Test that saving a network with the same ID replaces it."""
        save_network(simple_network, "update_test", model_dir=temp_db_dir)
        child = simple_network.child(50, np.random.default_rng(1))
        save_network(child, "update_test", model_dir=temp_db_dir)

        assert load_network("update_test", temp_db_dir) == child
        assert len(list_saved_networks(temp_db_dir)) == 1

    def test_save_unencodable_network(self, temp_db_dir):
        """Test that a network too large for the format is not saved."""
        from neuron.neuron import Neuron
        net = NeuralNet(["s" * 70000], ["x"], [Neuron([1])], [Neuron([1])])

        assert save_network(net, "too_big", model_dir=temp_db_dir) is False
        assert list_saved_networks(temp_db_dir) == []


@pytest.mark.integration
class TestPersistenceIntegration:
    """Integration tests for model persistence."""

    def test_save_load_mutate_cycle(self, simple_network, temp_db_dir):
        """Test complete cycle: save, load, mutate, save the child."""
        save_network(simple_network, "parent", model_dir=temp_db_dir)

        loaded = load_network("parent", temp_db_dir)
        child = loaded.child(100, np.random.default_rng(5))
        save_network(child, "child", model_dir=temp_db_dir, parent_id="parent")

        final = load_network("child", temp_db_dir)
        metadata = get_network_metadata("child", temp_db_dir)

        assert final == child
        assert metadata['parent_id'] == "parent"
        inputs = {"sensor 1": 1.0, "sensor 2": -2.0, "sensor 3": 0.5}
        assert final.compute(inputs) == child.compute(inputs)

    def test_multiple_networks_coexist(self, temp_db_dir):
        """Test that networks of different shapes can coexist."""
        shapes = [
            (["a"], ["x"], "tiny"),
            (["a", "b", "c"], ["x", "y"], "small"),
            ([f"s{i}" for i in range(20)], [f"a{i}" for i in range(8)], "wide")
        ]

        rng = np.random.default_rng(2)
        for sensors, actions, network_id in shapes:
            save_network(NeuralNet.random(sensors, actions, rng), network_id,
                         model_dir=temp_db_dir)

        assert len(list_saved_networks(temp_db_dir)) == len(shapes)

        for sensors, actions, network_id in shapes:
            loaded = load_network(network_id, temp_db_dir)
            assert loaded is not None
            assert loaded.sensors() == sorted(sensors)
            assert loaded.actions() == sorted(actions)


class TestDeleteOldNetworks:
    """Tests for automatic cleanup of old networks."""

    def test_delete_old_networks_basic(self, simple_network, temp_db_dir):
        """Test that networks older than the threshold are deleted."""
        save_network(simple_network, "old", model_dir=temp_db_dir)
        age_network(temp_db_dir, "old", '-3 days')

        assert delete_old_networks(days=2, model_dir=temp_db_dir) == 1
        assert load_network("old", temp_db_dir) is None

    def test_delete_old_networks_preserves_recent(self, simple_network, temp_db_dir):
        """Test that recent networks are not deleted."""
        save_network(simple_network, "recent", model_dir=temp_db_dir)

        assert delete_old_networks(days=2, model_dir=temp_db_dir) == 0
        assert load_network("recent", temp_db_dir) is not None

    def test_delete_old_networks_mixed_ages(self, simple_network, temp_db_dir):
        """Test with a mix of old and recent networks."""
        old_ids = ["old_1", "old_2"]
        recent_ids = ["recent_1", "recent_2"]
        for network_id in old_ids + recent_ids:
            save_network(simple_network, network_id, model_dir=temp_db_dir)
        for network_id in old_ids:
            age_network(temp_db_dir, network_id, '-3 days')

        assert delete_old_networks(days=2, model_dir=temp_db_dir) == len(old_ids)
        for network_id in old_ids:
            assert load_network(network_id, temp_db_dir) is None
        for network_id in recent_ids:
            assert load_network(network_id, temp_db_dir) is not None

    def test_delete_old_networks_empty_db(self, temp_db_dir):
        """Test delete_old_networks on empty database."""
        assert delete_old_networks(days=2, model_dir=temp_db_dir) == 0

    def test_delete_old_networks_negative_days(self, temp_db_dir):
        """Test that negative days raises ValueError."""
        with pytest.raises(ValueError) as exc_info:
            delete_old_networks(days=-1, model_dir=temp_db_dir)
        assert "non-negative" in str(exc_info.value)

    def test_delete_old_networks_zero_days(self, simple_network, temp_db_dir):
        """Test that days=0 deletes anything created before now."""
        save_network(simple_network, "hour_old", model_dir=temp_db_dir)
        age_network(temp_db_dir, "hour_old", '-1 hour')

        assert delete_old_networks(days=0, model_dir=temp_db_dir) == 1

    def test_model_database_delete_old_networks_method(self, simple_network, temp_db_dir):
        """Test ModelDatabase.delete_old_networks_from_db directly."""
        db = ModelDatabase(db_path=os.path.join(temp_db_dir, "networks.db"))
        db.save_network_to_db(simple_network, "test_network")
        age_network(temp_db_dir, "test_network", '-3 days')

        assert db.delete_old_networks_from_db(days=2) == 1
        assert db.load_network_from_db("test_network") is None
