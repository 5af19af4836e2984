"""Kubeforge Kubernetes cluster bootstrap."""

from .inventory import InventoryLoader
from .orchestrator import Orchestrator, bootstrap_cluster

__all__ = ["Orchestrator", "InventoryLoader", "bootstrap_cluster"]
