"""Storage abstraction for graph backends."""

from .base import GraphStoreBase, get_graph_store

__all__ = ["GraphStoreBase", "get_graph_store"]
