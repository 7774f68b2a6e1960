"""
easyk8s/models/status.py

Cluster health snapshot returned by Provider.get_cluster_status.
"""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field


class ComponentStatus(BaseModel):
    """Aggregated pod health of one system component in kube-system."""

    name: str
    ready: bool = False
    message: str = ""


class ClusterStatus(BaseModel):
    """Node counts, readiness and component health of a running cluster."""

    ready: bool = False
    endpoint: str = ""
    total_nodes: int = 0
    ready_nodes: int = 0
    control_plane_nodes: int = 0
    control_plane_ready: int = 0
    worker_nodes: int = 0
    workers_ready: int = 0
    components: List[ComponentStatus] = Field(default_factory=list)
    message: str = ""


__all__ = ["ComponentStatus", "ClusterStatus"]
