"""
easyk8s/models/k8s.py

Minimal Pydantic views of the `kubectl get ... -o json` documents the health
checks read. Unknown fields are ignored.
"""

from __future__ import annotations
from typing import Dict, List
from pydantic import BaseModel, Field

CONTROL_PLANE_LABEL = "node-role.kubernetes.io/control-plane"


class ObjectMeta(BaseModel):
    name: str = ""
    namespace: str = ""
    labels: Dict[str, str] = Field(default_factory=dict)


class NodeCondition(BaseModel):
    type: str
    status: str


class NodeStatus(BaseModel):
    conditions: List[NodeCondition] = Field(default_factory=list)


class Node(BaseModel):
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    status: NodeStatus = Field(default_factory=NodeStatus)

    @property
    def is_ready(self) -> bool:
        return any(c.type == "Ready" and c.status == "True" for c in self.status.conditions)

    @property
    def is_control_plane(self) -> bool:
        return CONTROL_PLANE_LABEL in self.metadata.labels


class NodeList(BaseModel):
    items: List[Node] = Field(default_factory=list)


class PodStatus(BaseModel):
    phase: str = ""


class Pod(BaseModel):
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    status: PodStatus = Field(default_factory=PodStatus)

    @property
    def is_running(self) -> bool:
        return self.status.phase == "Running"

    @property
    def is_completed(self) -> bool:
        return self.status.phase == "Succeeded"


class PodList(BaseModel):
    items: List[Pod] = Field(default_factory=list)

    def running(self) -> List[Pod]:
        return [p for p in self.items if p.is_running]
