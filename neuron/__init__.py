"""
neuron package
~~~~~~~~~~~~~~

Gene-encoded neurons and two-layer feed-forward networks.
Contains the neuron and network implementations, their binary and text
encodings, SQLite model persistence, and API server.
"""

__version__ = "1.0.0"
