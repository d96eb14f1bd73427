"""Immutable marker primitives handed to the external viewer.

A marker is identified by ``(namespace, id)``. The viewer keeps every
marker it has been sent until it receives a DELETE marker with the same
key, or a DELETE_ALL.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from layerview.attributes import IDENTITY_ROTATION, Quaternion, Vector3
from layerview.colormap import RGBA

MarkerKey = tuple[str, int]

NO_COLOR: RGBA = (0.0, 0.0, 0.0, 0.0)


class MarkerAction(str, Enum):
    """What the viewer should do with a marker."""

    ADD = "ADD"
    DELETE = "DELETE"
    DELETE_ALL = "DELETE_ALL"


class MarkerKind(str, Enum):
    """Geometry a marker draws."""

    SPHERE_LIST = "SPHERE_LIST"
    CUBE_LIST = "CUBE_LIST"
    CUBE = "CUBE"
    TEXT_VIEW_FACING = "TEXT_VIEW_FACING"
    LINE_LIST = "LINE_LIST"


@dataclass(frozen=True)
class Pose:
    position: Vector3 = (0.0, 0.0, 0.0)
    orientation: Quaternion = IDENTITY_ROTATION


@dataclass(frozen=True)
class Marker:
    """A single renderable primitive.

    ``points`` and ``colors`` are parallel for list kinds; LINE_LIST markers
    hold two points per segment. ``frame_id`` and ``stamp`` are filled in
    by :meth:`stamped` just before dispatch.
    """

    namespace: str
    id: int
    action: MarkerAction = MarkerAction.ADD
    kind: MarkerKind | None = None
    pose: Pose = field(default_factory=Pose)
    scale: Vector3 = (0.0, 0.0, 0.0)
    color: RGBA = NO_COLOR
    points: tuple[Vector3, ...] = ()
    colors: tuple[RGBA, ...] = ()
    text: str = ""
    frame_id: str = ""
    stamp: float = 0.0

    @property
    def key(self) -> MarkerKey:
        return (self.namespace, self.id)

    @property
    def is_add(self) -> bool:
        return self.action == MarkerAction.ADD

    @property
    def is_delete(self) -> bool:
        return self.action == MarkerAction.DELETE

    @property
    def num_segments(self) -> int:
        """Number of line segments (LINE_LIST only)."""
        if self.kind != MarkerKind.LINE_LIST:
            return 0
        return len(self.points) // 2

    def stamped(self, frame_id: str, stamp: float) -> Marker:
        """Copy of this marker with its header filled in."""
        return dataclasses.replace(self, frame_id=frame_id, stamp=stamp)

    def as_delete(self) -> Marker:
        """Retraction keyed like this marker."""
        return make_delete_marker(self.namespace, self.id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain message dict for transports."""
        result: dict[str, Any] = {
            "header": {"frame_id": self.frame_id, "stamp": self.stamp},
            "ns": self.namespace,
            "id": self.id,
            "action": self.action.value,
        }
        if self.action != MarkerAction.ADD:
            return result

        result.update({
            "type": self.kind.value if self.kind else None,
            "pose": {
                "position": list(self.pose.position),
                "orientation": list(self.pose.orientation),
            },
            "scale": list(self.scale),
            "color": list(self.color),
        })
        if self.points:
            result["points"] = [list(p) for p in self.points]
        if self.colors:
            result["colors"] = [list(c) for c in self.colors]
        if self.text:
            result["text"] = self.text
        return result


def make_delete_marker(namespace: str, marker_id: int) -> Marker:
    """Retraction of the marker keyed ``(namespace, marker_id)``."""
    return Marker(namespace=namespace, id=marker_id, action=MarkerAction.DELETE)


def make_delete_all_marker() -> Marker:
    """Retraction of every marker the viewer holds on a channel."""
    return Marker(namespace="", id=0, action=MarkerAction.DELETE_ALL)
