"""Color and geometry helpers shared by the marker builders.

Everything here is a pure function of its arguments: no graph access and
no configuration ownership. Node colors use 0-255 RGB channels; marker
colors use RGBA floats in [0, 1].
"""

from __future__ import annotations

import colorsys
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from layerview.config import LayerConfig, VisualizerConfig

RGB = tuple[int, int, int]
RGBA = tuple[float, float, float, float]
Vector3 = tuple[float, float, float]

ZERO_COLOR: RGB = (0, 0, 0)
ALARM_COLOR: RGB = (255, 0, 0)


@dataclass(frozen=True)
class HlsColorMapConfig:
    """Bounds of a linear colormap through hue/luminance/saturation space.

    All six bounds are in [0, 1]; hue wraps around the color wheel.
    """

    min_hue: float = 0.0
    max_hue: float = 0.7
    min_saturation: float = 0.9
    max_saturation: float = 0.9
    min_luminance: float = 0.45
    max_luminance: float = 0.45


def normalize_ratio(min_value: float, max_value: float, value: float) -> float:
    """Position of ``value`` between ``min_value`` and ``max_value``, clamped to [0, 1].

    A non-finite ratio (including ``max_value == min_value``) maps to 0.
    Bounds whose difference overflows are halved before dividing, so
    ``value == max_value`` still maps to 1 for any finite ``max_value > min_value``.

    Examples:
        >>> normalize_ratio(0.0, 2.0, 1.0)
        0.5
        >>> normalize_ratio(1.0, 1.0, 5.0)
        0.0
    """
    span = max_value - min_value
    try:
        if math.isinf(span) and math.isfinite(min_value) and math.isfinite(max_value):
            ratio = (value / 2.0 - min_value / 2.0) / (max_value / 2.0 - min_value / 2.0)
        else:
            ratio = (value - min_value) / span
    except ZeroDivisionError:
        return 0.0
    if not math.isfinite(ratio):
        return 0.0
    return min(1.0, max(0.0, ratio))


def interpolate_color_map(config: HlsColorMapConfig, ratio: float) -> RGB:
    """Color at ``ratio`` along the colormap, as 0-255 RGB."""
    ratio = min(1.0, max(0.0, ratio))
    hue = config.min_hue + ratio * (config.max_hue - config.min_hue)
    luminance = config.min_luminance + ratio * (config.max_luminance - config.min_luminance)
    saturation = config.min_saturation + ratio * (config.max_saturation - config.min_saturation)
    r, g, b = colorsys.hls_to_rgb(hue % 1.0, luminance, saturation)
    return (_to_channel(r), _to_channel(g), _to_channel(b))


def color_for_continuous_attribute(
    config: HlsColorMapConfig,
    min_value: float,
    max_value: float,
    value: float,
) -> RGB:
    """Map a scalar attribute onto the colormap.

    Returns ZERO_COLOR when the range is degenerate (``max_value <= min_value``),
    whatever ``value`` is.
    """
    if not max_value > min_value:
        return ZERO_COLOR
    return interpolate_color_map(config, normalize_ratio(min_value, max_value, value))


def layer_z_offset(layer_config: LayerConfig, global_config: VisualizerConfig) -> float:
    """Vertical offset separating a layer from the others (0 when collapsed)."""
    if global_config.collapse_layers:
        return 0.0
    return layer_config.z_offset_scale * global_config.layer_z_step


def offset_z(point: Vector3, dz: float) -> Vector3:
    """Copy of ``point`` raised by ``dz``."""
    return (point[0], point[1], point[2] + dz)


def make_color(color: RGB, alpha: float = 1.0) -> RGBA:
    """Convert a 0-255 RGB color into an RGBA float tuple."""
    r, g, b = color
    return (r / 255.0, g / 255.0, b / 255.0, float(alpha))


def _to_channel(value: float) -> int:
    return int(round(min(1.0, max(0.0, value)) * 255.0))
