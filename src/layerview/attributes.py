"""Node attribute shapes and node symbol labels.

Node attributes form a closed family of frozen dataclasses. Code that needs
a particular shape goes through the accessors below, which return ``None``
for any other shape instead of raising.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from layerview.colormap import RGB, Vector3
from layerview.exceptions import AttributeShapeError

Quaternion = tuple[float, float, float, float]  # x, y, z, w

IDENTITY_ROTATION: Quaternion = (0.0, 0.0, 0.0, 1.0)


class BoundingBoxType(str, Enum):
    """Axis-aligned or oriented bounding box."""

    AABB = "AABB"
    OBB = "OBB"


@dataclass(frozen=True)
class BoundingBox:
    """Box extent plus its pose in the world frame.

    ``world_R_center`` is only meaningful for OBB boxes.
    """

    type: BoundingBoxType = BoundingBoxType.AABB
    min: Vector3 = (0.0, 0.0, 0.0)
    max: Vector3 = (0.0, 0.0, 0.0)
    world_P_center: Vector3 = (0.0, 0.0, 0.0)
    world_R_center: Quaternion = IDENTITY_ROTATION

    @property
    def dimensions(self) -> Vector3:
        """Extent along each axis (max - min)."""
        return (
            self.max[0] - self.min[0],
            self.max[1] - self.min[1],
            self.max[2] - self.min[2],
        )

    @classmethod
    def from_extents(
        cls,
        min_corner: Vector3,
        max_corner: Vector3,
        rotation: Quaternion | None = None,
    ) -> BoundingBox:
        """Build a box centered between two corners.

        Passing a rotation makes an OBB, otherwise an AABB.
        """
        center = tuple((lo + hi) / 2.0 for lo, hi in zip(min_corner, max_corner))
        if rotation is None:
            return cls(BoundingBoxType.AABB, tuple(min_corner), tuple(max_corner), center)
        return cls(BoundingBoxType.OBB, tuple(min_corner), tuple(max_corner), center, tuple(rotation))


@dataclass(frozen=True)
class NodeAttributes:
    """Attributes every node carries."""

    position: Vector3 = (0.0, 0.0, 0.0)


@dataclass(frozen=True)
class SemanticNodeAttributes(NodeAttributes):
    """Node with a name, display color and semantic class."""

    name: str = ""
    color: RGB = (0, 0, 0)
    semantic_label: int = 0


@dataclass(frozen=True)
class ObjectNodeAttributes(SemanticNodeAttributes):
    """Semantic node with a bounding box."""

    bounding_box: BoundingBox = field(default_factory=BoundingBox)


@dataclass(frozen=True)
class PlaceNodeAttributes(SemanticNodeAttributes):
    """Semantic node carrying its distance to the nearest obstacle."""

    distance: float = 0.0
    num_basis_points: int = 0


def semantic_color(attrs: NodeAttributes) -> RGB | None:
    """Display color of a semantic node, or None for other shapes."""
    if isinstance(attrs, SemanticNodeAttributes):
        return attrs.color
    return None


def bounding_box(attrs: NodeAttributes) -> BoundingBox | None:
    """Bounding box of an object node, or None for other shapes."""
    if isinstance(attrs, ObjectNodeAttributes):
        return attrs.bounding_box
    return None


def place_distance(attrs: NodeAttributes) -> float | None:
    """Obstacle distance of a place node, or None for other shapes."""
    if isinstance(attrs, PlaceNodeAttributes):
        return attrs.distance
    return None


def require_bounding_box(node_id: int, attrs: NodeAttributes) -> BoundingBox:
    """Like :func:`bounding_box` but raises AttributeShapeError on a mismatch."""
    box = bounding_box(attrs)
    if box is None:
        raise AttributeShapeError(node_id, ObjectNodeAttributes.__name__, type(attrs).__name__)
    return box


# =============================================================================
# Node symbols
# =============================================================================

_CATEGORY_SHIFT = 56
_INDEX_MASK = (1 << _CATEGORY_SHIFT) - 1


@dataclass(frozen=True)
class NodeSymbol:
    """Readable view of a node id: one category character plus an index.

    The category lives in the top byte of the 64-bit id, the index in the
    remaining 56 bits.

    Examples:
        >>> NodeSymbol.from_parts("O", 12).label
        'O12'
        >>> NodeSymbol(7).label
        '7'
    """

    value: int

    @classmethod
    def from_parts(cls, category: str, index: int) -> NodeSymbol:
        if len(category) != 1:
            raise ValueError(f"category must be a single character, got {category!r}")
        if not 0 <= index <= _INDEX_MASK:
            raise ValueError(f"index {index} does not fit in {_CATEGORY_SHIFT} bits")
        return cls((ord(category) << _CATEGORY_SHIFT) | index)

    @property
    def category(self) -> str:
        return chr((self.value >> _CATEGORY_SHIFT) & 0xFF)

    @property
    def index(self) -> int:
        return self.value & _INDEX_MASK

    @property
    def label(self) -> str:
        """Short label such as ``O12``; plain decimal id when there is no category."""
        category = self.category
        if not category.isprintable() or category.isspace() or self.value < 0:
            return str(self.value)
        return f"{category}{self.index}"

    def __int__(self) -> int:
        return self.value

    def __str__(self) -> str:
        return self.label


def node_label(node_id: int) -> str:
    """Text shown next to a node."""
    return NodeSymbol(node_id).label
