"""
model_persistence.py
~~~~~~~~~~~~~~~~~~~~

SQLite-based persistence for neural networks.

Networks are stored in their binary save format, next to the sensor and
action names as JSON so they can be listed without decoding every blob.
"""

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Generator, List, Optional

from neuron.errors import NeuronError
from neuron.net import NeuralNet

# Configure module logger
logger = logging.getLogger(__name__)


class ModelDatabase:
    """
    Manages SQLite database for neural network persistence.

    The database stores:
    - Network metadata (sensors, actions, parent network)
    - Networks in their binary save format as blobs
    """

    def __init__(self, db_path: str = 'models/networks.db'):
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self._ensure_directory()
        self._initialize_schema()

    def _ensure_directory(self) -> None:
        """Create the database directory if it doesn't exist."""
        db_dir = os.path.dirname(self.db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir)

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Yields:
            sqlite3.Connection: Database connection
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row  # Enable column access by name
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _initialize_schema(self) -> None:
        """Create the database schema if it doesn't exist."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS networks (
                    network_id TEXT PRIMARY KEY,
                    sensors TEXT NOT NULL,
                    actions TEXT NOT NULL,
                    network_data BLOB NOT NULL,
                    parent_id TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_parent_id
                ON networks(parent_id)
            ''')

            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_created_at
                ON networks(created_at DESC)
            ''')

    @staticmethod
    def _row_to_metadata(row: sqlite3.Row) -> Dict[str, Any]:
        sensors = json.loads(row['sensors'])
        actions = json.loads(row['actions'])
        return {
            'network_id': row['network_id'],
            'sensors': sensors,
            'actions': actions,
            'front_shape': [len(actions), len(sensors)],
            'back_shape': [len(actions), len(actions)],
            'parent_id': row['parent_id'],
            'created_at': row['created_at'],
            'updated_at': row['updated_at']
        }

    def save_network_to_db(
        self,
        network: NeuralNet,
        network_id: str,
        parent_id: Optional[str] = None
    ) -> bool:
        """
        Save a network to the database.

        Args:
            network: Network to save
            network_id: Unique identifier for the network
            parent_id: Identifier of the network this one was derived from

        Returns:
            bool: True if successful

        Raises:
            EncodeError: If the network does not fit the binary format
        """
        network_data = network.to_bytes()

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                INSERT OR REPLACE INTO networks
                (network_id, sensors, actions, network_data, parent_id,
                 updated_at)
                VALUES (?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
            ''', (
                network_id,
                json.dumps(network.sensors()),
                json.dumps(network.actions()),
                network_data,
                parent_id
            ))

        logger.info(
            f"Saved network '{network_id}' with {len(network.sensors())} "
            f"sensors, {len(network.actions())} actions, parent={parent_id}"
        )
        return True

    def load_network_from_db(self, network_id: str) -> Optional[NeuralNet]:
        """
        Load a network from the database.

        Args:
            network_id: Unique identifier of the network

        Returns:
            NeuralNet or None if not found

        Raises:
            DecodeError: If the stored blob is corrupt
            ConstructionError: If the stored blob decodes to an invalid network
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'SELECT network_data FROM networks WHERE network_id = ?',
                (network_id,)
            )
            row = cursor.fetchone()

        if row is None:
            logger.warning(f"Network '{network_id}' not found")
            return None

        network = NeuralNet.from_bytes(row['network_data'])
        logger.info(f"Loaded network '{network_id}'")
        return network

    def list_networks_from_db(self) -> List[Dict[str, Any]]:
        """
        List all networks with metadata, newest first.

        Returns:
            List of network metadata dictionaries
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT
                    network_id,
                    sensors,
                    actions,
                    parent_id,
                    created_at,
                    updated_at
                FROM networks
                ORDER BY created_at DESC
            ''')
            networks = [self._row_to_metadata(row) for row in cursor.fetchall()]

        logger.debug(f"Listed {len(networks)} networks")
        return networks

    def delete_network_from_db(self, network_id: str) -> bool:
        """
        Delete a network from the database.

        Args:
            network_id: Unique identifier of the network

        Returns:
            bool: True if deleted, False if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'DELETE FROM networks WHERE network_id = ?',
                (network_id,)
            )
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info(f"Deleted network '{network_id}'")
        else:
            logger.warning(
                f"Could not delete network '{network_id}': not found"
            )
        return deleted

    def delete_old_networks_from_db(self, days: int) -> int:
        """
        Delete networks created more than ``days`` days ago.

        Args:
            days: Age threshold in days

        Returns:
            int: Number of networks deleted

        Raises:
            ValueError: If days is negative
        """
        if days < 0:
            raise ValueError(f"days must be non-negative, got {days}")

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'DELETE FROM networks '
                "WHERE created_at < datetime('now', ?)",
                (f'-{int(days)} days',)
            )
            deleted = cursor.rowcount

        logger.info(f"Deleted {deleted} network(s) older than {days} day(s)")
        return deleted

    def get_network_metadata_from_db(
        self,
        network_id: str
    ) -> Optional[Dict[str, Any]]:
        """
        Get network metadata without decoding the network.

        Args:
            network_id: Unique identifier of the network

        Returns:
            Metadata dictionary or None if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT
                    network_id,
                    sensors,
                    actions,
                    parent_id,
                    created_at,
                    updated_at
                FROM networks
                WHERE network_id = ?
            ''', (network_id,))
            row = cursor.fetchone()

        if row is None:
            logger.warning(
                f"Metadata for network '{network_id}' not found"
            )
            return None

        return self._row_to_metadata(row)


# Global database instance
_db = None


def _get_db() -> ModelDatabase:
    """
    Get or create the global database instance.

    Returns:
        ModelDatabase: The global database instance
    """
    global _db
    if _db is None:
        _db = ModelDatabase()
    return _db


def _db_for(model_dir: str) -> ModelDatabase:
    # Use singleton if default path, otherwise create new instance
    if model_dir == 'models':
        return _get_db()
    return ModelDatabase(db_path=os.path.join(model_dir, 'networks.db'))


def _valid_id(network_id: Any) -> bool:
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return False
    return True


def save_network(
    network: NeuralNet,
    network_id: str,
    model_dir: str = 'models',
    parent_id: Optional[str] = None
) -> bool:
    """
    Save a neural network to the SQLite database.

    Args:
        network: The neural network to save
        network_id: A unique identifier for the network
        model_dir: Directory for the database file
        parent_id: Identifier of the network this one was derived from

    Returns:
        bool: True if the save was successful, False otherwise

    Example:
        >>> net = NeuralNet.random(['light'], ['move'])
        >>> save_network(net, "my_network")
        True
    """
    if not _valid_id(network_id):
        return False

    try:
        return _db_for(model_dir).save_network_to_db(
            network, network_id, parent_id
        )

    except NeuronError as e:
        logger.error(f"Encoding error saving network '{network_id}': {e}")
        return False
    except sqlite3.Error as e:
        logger.error(f"Database error saving network '{network_id}': {e}")
        return False
    except Exception as e:
        logger.exception(
            f"Unexpected error saving network '{network_id}': {e}"
        )
        return False


def load_network(
    network_id: str,
    model_dir: str = 'models'
) -> Optional[NeuralNet]:
    """
    Load a neural network from the SQLite database.

    Args:
        network_id: The unique identifier of the network to load
        model_dir: Directory where the database is stored

    Returns:
        The loaded NeuralNet or None if not found or unreadable

    Example:
        >>> net = load_network("my_network")
        >>> if net:
        ...     print(net.actions())
    """
    if not _valid_id(network_id):
        return None

    try:
        return _db_for(model_dir).load_network_from_db(network_id)

    except NeuronError as e:
        logger.error(
            f"Decoding error loading network '{network_id}': {e}"
        )
        return None
    except sqlite3.Error as e:
        logger.error(
            f"Database error loading network '{network_id}': {e}"
        )
        return None
    except Exception as e:
        logger.exception(
            f"Unexpected error loading network '{network_id}': {e}"
        )
        return None


def list_saved_networks(
    model_dir: str = 'models'
) -> List[Dict[str, Any]]:
    """
    List all saved networks with their metadata.

    Args:
        model_dir: Directory where the database is stored

    Returns:
        list: A list of metadata dictionaries for each saved network
    """
    try:
        return _db_for(model_dir).list_networks_from_db()

    except sqlite3.Error as e:
        logger.error(f"Database error listing networks: {e}")
        return []
    except json.JSONDecodeError as e:
        logger.error(f"JSON decode error listing networks: {e}")
        return []
    except Exception as e:
        logger.exception(f"Unexpected error listing networks: {e}")
        return []


def delete_network(network_id: str, model_dir: str = 'models') -> bool:
    """
    Delete a saved network from the database.

    Args:
        network_id: The unique identifier of the network to delete
        model_dir: Directory where the database is stored

    Returns:
        bool: True if deletion was successful, False otherwise
    """
    if not _valid_id(network_id):
        return False

    try:
        return _db_for(model_dir).delete_network_from_db(network_id)

    except sqlite3.Error as e:
        logger.error(f"Database error deleting network '{network_id}': {e}")
        return False
    except Exception as e:
        logger.exception(
            f"Unexpected error deleting network '{network_id}': {e}"
        )
        return False


def delete_old_networks(days: int = 2, model_dir: str = 'models') -> int:
    """
    Delete saved networks older than the given number of days.

    Args:
        days: Age threshold in days
        model_dir: Directory where the database is stored

    Returns:
        int: Number of networks deleted, or -1 on database errors

    Raises:
        ValueError: If days is negative
    """
    if days < 0:
        raise ValueError(f"days must be non-negative, got {days}")

    try:
        return _db_for(model_dir).delete_old_networks_from_db(days)

    except sqlite3.Error as e:
        logger.error(f"Database error deleting old networks: {e}")
        return -1
    except Exception as e:
        logger.exception(f"Unexpected error deleting old networks: {e}")
        return -1


def get_network_metadata(
    network_id: str,
    model_dir: str = 'models'
) -> Optional[Dict[str, Any]]:
    """
    Get metadata for a specific network without decoding it.

    Args:
        network_id: The unique identifier of the network
        model_dir: Directory where the database is stored

    Returns:
        dict: Network metadata or None if not found

    Example:
        >>> metadata = get_network_metadata("my_network")
        >>> if metadata:
        ...     print(f"Sensors: {metadata['sensors']}")
    """
    if not _valid_id(network_id):
        return None

    try:
        return _db_for(model_dir).get_network_metadata_from_db(network_id)

    except sqlite3.Error as e:
        logger.error(
            f"Database error getting metadata for '{network_id}': {e}"
        )
        return None
    except json.JSONDecodeError as e:
        logger.error(
            f"JSON decode error getting metadata for '{network_id}': {e}"
        )
        return None
    except Exception as e:
        logger.exception(
            f"Unexpected error getting metadata for '{network_id}': {e}"
        )
        return None
