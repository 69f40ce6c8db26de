"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server for gene-encoded neural networks.

This module provides endpoints for:
- Creating random networks for a set of sensors and actions
- Evaluating networks on sensor readings
- Deriving mutated children of a network
- Exporting and importing networks in their binary format
- Persisting networks to/from SQLite database

The server uses:
- Flask for REST API endpoints
- Flask-CORS so browser front-ends on other origins can call it
- SQLite for network persistence
"""

import logging
import os
import uuid
from typing import Any, Dict, Optional

import numpy as np
from flask import Flask, Response, jsonify, request
from flask_cors import CORS

from neuron.errors import (
    ComputeArityError,
    ComputeRangeError,
    ConstructionError,
    DecodeError,
    EncodeError
)
from neuron.net import NeuralNet
from neuron.model_persistence import (
    save_network,
    load_network,
    list_saved_networks,
    delete_network,
    delete_old_networks
)

# ============================================================================
# LOGGING SETUP
# ============================================================================

def configure_logging() -> None:
    """
    Set up logging based on environment.

    - In production: Show fewer logs (less noise) but keep important logs
    - In development: Show more detailed logs for debugging
    """
    log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    is_production = os.getenv('FLASK_ENV') == 'production'

    # Set up basic logging format
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if is_production:
        logging.getLogger('werkzeug').setLevel(logging.WARNING)
        logging.getLogger('neuron').setLevel(logging.INFO)


configure_logging()
logger = logging.getLogger(__name__)

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__)
CORS(app, resources={r"/*": {"origins": "*"}})  # Allow requests from any origin

# Directory holding networks.db
MODEL_DIR = os.getenv('NEURON_MODEL_DIR', 'models')

# ============================================================================
# GLOBAL STATE
# ============================================================================

# Networks currently loaded in memory: {network_id: network_info}
active_networks: Dict[str, Dict[str, Any]] = {}


def reload_saved_networks() -> None:
    """
    Reload all saved networks from the database into memory.

    Called at startup to restore networks that were saved before the
    application was restarted.
    """
    saved_networks = list_saved_networks(MODEL_DIR)

    if not saved_networks:
        logger.info("No saved networks to reload")
        return

    loaded_count = 0
    for net_info in saved_networks:
        network_id = net_info['network_id']
        net = load_network(network_id, MODEL_DIR)
        if net is not None:
            active_networks[network_id] = {
                'network': net,
                'parent_id': net_info['parent_id']
            }
            loaded_count += 1
        else:
            logger.warning(f"Failed to load network {network_id}")

    logger.info(f"Reloaded {loaded_count} network(s) from database")


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def _make_rng(seed: Any) -> Optional[np.random.Generator]:
    """Build a generator from an optional integer seed."""
    if seed is None:
        return None
    if isinstance(seed, bool) or not isinstance(seed, int) or seed < 0:
        raise ValueError('seed must be a non-negative integer')
    return np.random.default_rng(seed)


def _register(
    net: NeuralNet,
    parent_id: Optional[str] = None
) -> str:
    """Keep a network in memory and on disk; return its new id."""
    network_id = str(uuid.uuid4())
    active_networks[network_id] = {'network': net, 'parent_id': parent_id}
    if not save_network(net, network_id, MODEL_DIR, parent_id=parent_id):
        logger.warning(f"Network {network_id} kept in memory only")
    return network_id


def _describe(network_id: str, info: Dict[str, Any]) -> Dict[str, Any]:
    net = info['network']
    return {
        'network_id': network_id,
        'sensors': net.sensors(),
        'actions': net.actions(),
        'parent_id': info['parent_id'],
        'status': 'in_memory'
    }


def _is_name_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(v, str) for v in value)


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/status', methods=['GET'])
def get_status():
    """Return server status and statistics."""
    return jsonify({
        'status': 'online',
        'active_networks': len(active_networks)
    }), 200


@app.route('/api/networks', methods=['POST'])
def create_network():
    """
    Create a new random network.

    Request body:
        {'sensors': ['light', 'sound'], 'actions': ['move'], 'seed': 42}

    Returns:
        JSON with network_id, sensors, actions and status
    """
    data = request.get_json(silent=True) or {}
    sensors = data.get('sensors')
    actions = data.get('actions')

    if not _is_name_list(sensors) or not _is_name_list(actions):
        logger.warning(f"Invalid names requested: sensors={sensors}, actions={actions}")
        return jsonify({
            'error': 'sensors and actions must be lists of strings'
        }), 400

    try:
        net = NeuralNet.random(sensors, actions, _make_rng(data.get('seed')))
    except ValueError as e:
        logger.warning(f"Rejected network creation: {e}")
        return jsonify({'error': str(e)}), 400

    network_id = _register(net)
    logger.info(
        f"Created network {network_id} with sensors {net.sensors()} "
        f"and actions {net.actions()}"
    )

    return jsonify({
        'network_id': network_id,
        'sensors': net.sensors(),
        'actions': net.actions(),
        'status': 'created'
    }), 201


@app.route('/api/networks', methods=['GET'])
def list_networks():
    """List all available networks (both in-memory and saved to disk)."""
    in_memory = [_describe(nid, info) for nid, info in active_networks.items()]

    # Get saved networks, excluding duplicates already in memory
    saved_only = []
    for net in list_saved_networks(MODEL_DIR):
        if net['network_id'] not in active_networks:
            net['status'] = 'saved'
            saved_only.append(net)

    logger.debug(f"Listing networks: {len(in_memory)} in memory, {len(saved_only)} saved")

    return jsonify({'networks': in_memory + saved_only}), 200


@app.route('/api/networks/<network_id>', methods=['GET'])
def get_network(network_id: str):
    """Return a network's names, neuron texts and text dump."""
    if network_id not in active_networks:
        logger.warning(f"Details requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    info = active_networks[network_id]
    net = info['network']
    details = _describe(network_id, info)
    details.update({
        'front_layer': [neuron.to_text() for neuron in net.front_layer],
        'back_layer': [neuron.to_text() for neuron in net.back_layer],
        'text': net.to_text()
    })
    return jsonify(details), 200


@app.route('/api/networks/<network_id>/compute', methods=['POST'])
def compute_network(network_id: str):
    """
    Evaluate a network.

    Request body:
        {'inputs': {'light': 1.0, 'sound': -0.5}}

    Returns:
        JSON with the boolean state of each action
    """
    if network_id not in active_networks:
        logger.warning(f"Compute requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    data = request.get_json(silent=True) or {}
    inputs = data.get('inputs')

    if not isinstance(inputs, dict) or not all(
        isinstance(v, (int, float)) and not isinstance(v, bool)
        for v in inputs.values()
    ):
        return jsonify({'error': 'inputs must map sensor names to numbers'}), 400

    try:
        result = active_networks[network_id]['network'].compute(inputs)
    except (ComputeArityError, ComputeRangeError) as e:
        logger.warning(f"Bad inputs for network {network_id}: {e}")
        return jsonify({'error': str(e)}), 400

    return jsonify({'network_id': network_id, 'actions': result}), 200


@app.route('/api/networks/<network_id>/child', methods=['POST'])
def create_child(network_id: str):
    """
    Derive a mutated child of a network.

    Request body:
        {'deviation': 100, 'seed': 7}  # seed is optional

    Returns:
        JSON with the child's network_id and its parent_id
    """
    if network_id not in active_networks:
        logger.warning(f"Child requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    data = request.get_json(silent=True) or {}
    deviation = data.get('deviation')

    if isinstance(deviation, bool) or not isinstance(deviation, int) or deviation < 1:
        return jsonify({'error': 'deviation must be a positive integer'}), 400

    try:
        rng = _make_rng(data.get('seed'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    try:
        child = active_networks[network_id]['network'].child(deviation, rng)
    except ValueError as e:
        logger.warning(f"Cannot derive child of network {network_id}: {e}")
        return jsonify({'error': str(e)}), 400

    child_id = _register(child, parent_id=network_id)
    logger.info(f"Created child {child_id} of network {network_id} (deviation={deviation})")

    return jsonify({
        'network_id': child_id,
        'parent_id': network_id,
        'status': 'created'
    }), 201


@app.route('/api/networks/<network_id>/export', methods=['GET'])
def export_network(network_id: str):
    """Download a network in its binary format."""
    if network_id not in active_networks:
        logger.warning(f"Export requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    try:
        data = active_networks[network_id]['network'].to_bytes()
    except EncodeError as e:
        logger.error(f"Cannot export network {network_id}: {e}")
        return jsonify({'error': str(e)}), 500

    return Response(
        data,
        mimetype='application/octet-stream',
        headers={'Content-Disposition': f'attachment; filename={network_id}.net'}
    )


@app.route('/api/networks/import', methods=['POST'])
def import_network():
    """Register a network uploaded as a raw binary request body."""
    payload = request.get_data()
    try:
        net = NeuralNet.from_bytes(payload)
    except (DecodeError, ConstructionError) as e:
        logger.warning(f"Rejected network import: {e}")
        return jsonify({'error': str(e)}), 400

    network_id = _register(net)
    logger.info(f"Imported network {network_id} ({len(payload)} bytes)")

    return jsonify({
        'network_id': network_id,
        'sensors': net.sensors(),
        'actions': net.actions(),
        'status': 'imported'
    }), 201


@app.route('/api/networks/<network_id>', methods=['DELETE'])
def delete_network_endpoint(network_id: str):
    """Delete a network from both memory and disk."""
    deleted_from_memory = False
    if network_id in active_networks:
        del active_networks[network_id]
        deleted_from_memory = True

    deleted_from_disk = delete_network(network_id, MODEL_DIR)

    if not deleted_from_memory and not deleted_from_disk:
        logger.warning(f"Delete attempted for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    logger.info(f"Deleted network {network_id}: memory={deleted_from_memory}, disk={deleted_from_disk}")

    return jsonify({
        'network_id': network_id,
        'deleted_from_memory': deleted_from_memory,
        'deleted_from_disk': deleted_from_disk
    }), 200


@app.route('/api/networks', methods=['DELETE'])
def delete_all_networks():
    """Delete all networks from both memory and disk."""
    in_memory_ids = list(active_networks.keys())
    saved_ids = [net['network_id'] for net in list_saved_networks(MODEL_DIR)]
    all_network_ids = list(set(in_memory_ids + saved_ids))

    deleted_from_memory_count = 0
    deleted_from_disk_count = 0

    for network_id in all_network_ids:
        if network_id in active_networks:
            del active_networks[network_id]
            deleted_from_memory_count += 1

        if delete_network(network_id, MODEL_DIR):
            deleted_from_disk_count += 1

    logger.info(
        f"Deleted all networks: {len(all_network_ids)} total, "
        f"{deleted_from_memory_count} from memory, {deleted_from_disk_count} from disk"
    )

    return jsonify({
        'deleted_count': len(all_network_ids),
        'deleted_from_memory': deleted_from_memory_count,
        'deleted_from_disk': deleted_from_disk_count,
        'message': f'Successfully deleted {len(all_network_ids)} network(s)'
    }), 200


@app.route('/api/networks/cleanup', methods=['POST'])
def cleanup_old_networks_endpoint():
    """
    Manually trigger cleanup of networks older than specified days.

    Request body (optional):
        {'days': 2}  # defaults to 2

    Returns:
        JSON with deleted_count, days, and message
    """
    data = request.get_json(silent=True) or {}
    days = data.get('days', 2)

    if isinstance(days, bool) or not isinstance(days, int) or days < 0:
        return jsonify({'error': 'days must be a non-negative integer'}), 400

    deleted_count = delete_old_networks(days=days, model_dir=MODEL_DIR)

    if deleted_count == -1:
        return jsonify({'error': 'Error occurred during cleanup'}), 500

    # Drop in-memory copies of networks that are gone from disk
    saved_ids = {net['network_id'] for net in list_saved_networks(MODEL_DIR)}
    for nid in [nid for nid in active_networks if nid not in saved_ids]:
        del active_networks[nid]
        logger.info(f"Removed network {nid} from memory (deleted from database)")

    logger.info(f"Manual cleanup: deleted {deleted_count} network(s) older than {days} day(s)")

    return jsonify({
        'deleted_count': deleted_count,
        'days': days,
        'message': f'Successfully deleted {deleted_count} network(s) older than {days} day(s)'
    }), 200


# ============================================================================
# SERVER STARTUP
# ============================================================================

if __name__ == '__main__':
    reload_saved_networks()

    is_cloud = bool(os.environ.get('PORT'))
    port = int(os.environ.get('PORT', 8000))

    if is_cloud:
        logger.info(f"Starting server in production mode on port {port}")
    else:
        logger.info(f"Starting server at http://localhost:{port}/")

    app.run(host='0.0.0.0', port=port, debug=not is_cloud, use_reloader=False)
