"""Style configuration for the scene graph visualizer.

Configurations are frozen dataclasses. The visualizer replaces them
wholesale on every update; use ``dataclasses.replace`` to derive a
modified copy.

Settings can be read from the ``[tool.layerview]`` section of the
nearest pyproject.toml, or from a standalone TOML file with the same
layout::

    [tool.layerview]
    world_frame = "world"
    loop_period = 0.1

    [tool.layerview.visualizer]
    layer_z_step = 5.0

    [tool.layerview.layers.2]
    use_label = true
"""

from __future__ import annotations

import dataclasses
import math
import sys
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Any

from layerview.colormap import HlsColorMapConfig
from layerview.exceptions import StyleConfigError


class DsgLayers(IntEnum):
    """Well-known layer ids of a dynamic scene graph."""

    OBJECTS = 2
    PLACES = 3
    ROOMS = 4
    BUILDINGS = 5


@dataclass(frozen=True)
class VisualizerConfig:
    """World-level styling shared by every layer."""

    layer_z_step: float = 5.0
    collapse_layers: bool = False

    color_places_by_distance: bool = True
    places_min_distance: float = 0.5
    places_max_distance: float = 2.5
    places_min_hue: float = 0.0
    places_max_hue: float = 0.7
    places_min_saturation: float = 0.9
    places_max_saturation: float = 0.9
    places_min_luminance: float = 0.45
    places_max_luminance: float = 0.45

    mesh_edge_break_ratio: float = 0.5
    mesh_layer_offset: float = 0.0

    objects_layer: int = DsgLayers.OBJECTS
    places_layer: int = DsgLayers.PLACES

    @property
    def places_colormap(self) -> HlsColorMapConfig:
        return HlsColorMapConfig(
            min_hue=self.places_min_hue,
            max_hue=self.places_max_hue,
            min_saturation=self.places_min_saturation,
            max_saturation=self.places_max_saturation,
            min_luminance=self.places_min_luminance,
            max_luminance=self.places_max_luminance,
        )


@dataclass(frozen=True)
class LayerConfig:
    """Styling of a single layer."""

    visualize: bool = True
    z_offset_scale: float = 0.0

    marker_scale: float = 0.1
    marker_alpha: float = 1.0
    use_sphere_marker: bool = True

    use_label: bool = False
    label_height: float = 1.0
    label_scale: float = 0.5

    use_bounding_box: bool = False
    bounding_box_alpha: float = 0.5

    use_edge_source: bool = True
    interlayer_edge_scale: float = 0.03
    interlayer_edge_alpha: float = 0.4
    interlayer_edge_use_color: bool = True
    interlayer_edge_insertion_skip: int = 0

    intralayer_edge_scale: float = 0.03
    intralayer_edge_alpha: float = 0.4
    intralayer_edge_insertion_skip: int = 0


@dataclass(frozen=True)
class ControllerSettings:
    """Settings of the redraw loop itself."""

    world_frame: str = "world"
    loop_period: float = 0.1


@dataclass(frozen=True)
class StyleSettings:
    """Everything read from a configuration file."""

    controller: ControllerSettings = field(default_factory=ControllerSettings)
    visualizer: VisualizerConfig = field(default_factory=VisualizerConfig)
    layers: dict[int, LayerConfig] = field(default_factory=dict)


def default_layer_configs(layer_ids: Iterable[int]) -> dict[int, LayerConfig]:
    """Default config for each layer, offset one z-step per layer rank."""
    return {
        layer_id: LayerConfig(z_offset_scale=float(rank))
        for rank, layer_id in enumerate(sorted(layer_ids))
    }


# =============================================================================
# Loading
# =============================================================================

_UNIT_INTERVAL_FIELDS = frozenset({
    "marker_alpha",
    "bounding_box_alpha",
    "interlayer_edge_alpha",
    "intralayer_edge_alpha",
    "places_min_hue",
    "places_max_hue",
    "places_min_saturation",
    "places_max_saturation",
    "places_min_luminance",
    "places_max_luminance",
})

_NON_NEGATIVE_FIELDS = frozenset({
    "interlayer_edge_insertion_skip",
    "intralayer_edge_insertion_skip",
    "marker_scale",
    "label_scale",
    "interlayer_edge_scale",
    "intralayer_edge_scale",
})


def find_pyproject(start: Path | None = None) -> Path | None:
    """Walk up from start directory to find pyproject.toml."""
    current = (start or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        candidate = directory / "pyproject.toml"
        if candidate.is_file():
            return candidate
    return None


def load_config(start: Path | None = None) -> StyleSettings:
    """Load [tool.layerview] from the nearest pyproject.toml.

    Returns default settings if no pyproject.toml or no [tool.layerview] section.
    """
    path = find_pyproject(start)
    if path is None:
        return StyleSettings()
    section = _read_toml(path).get("tool", {}).get("layerview")
    if section is None:
        return StyleSettings()
    return parse_settings(section)


def load_config_file(path: str | Path) -> StyleSettings:
    """Load settings from a TOML file.

    The ``[tool.layerview]`` table is used when present, otherwise the
    top level of the file.

    Raises:
        StyleConfigError: If any section has unknown keys or invalid values
    """
    data = _read_toml(path)
    section = data.get("tool", {}).get("layerview")
    if section is None:
        section = data
    return parse_settings(section)


def _read_toml(path: str | Path) -> dict[str, Any]:
    tomllib = _import_tomllib()
    with open(path, "rb") as f:
        return tomllib.load(f)


def parse_settings(section: Mapping[str, Any]) -> StyleSettings:
    """Build StyleSettings from an already parsed mapping."""
    section = dict(section)
    visualizer_data = section.pop("visualizer", {})
    layers_data = section.pop("layers", {})

    controller = _build(ControllerSettings, section, "tool.layerview")
    visualizer = _build(VisualizerConfig, visualizer_data, "visualizer")
    if not isinstance(layers_data, Mapping):
        raise StyleConfigError("layers", message="[layers] must be a table of layer tables")

    layers: dict[int, LayerConfig] = {}
    for raw_id, layer_data in layers_data.items():
        try:
            layer_id = int(raw_id)
        except (TypeError, ValueError):
            raise StyleConfigError("layers", message=f"Layer id {raw_id!r} is not an integer") from None
        layers[layer_id] = _build(LayerConfig, layer_data, f"layers.{layer_id}")

    if controller.loop_period <= 0:
        raise StyleConfigError("tool.layerview", "loop_period", "loop_period must be positive")

    return StyleSettings(controller=controller, visualizer=visualizer, layers=layers)


def _build(cls: type, data: Any, section: str):
    if not isinstance(data, Mapping):
        raise StyleConfigError(section, message=f"[{section}] must be a table")

    fields = {f.name: f for f in dataclasses.fields(cls)}
    unknown = sorted(set(data) - set(fields))
    if unknown:
        names = ", ".join(f"'{k}'" for k in unknown)
        raise StyleConfigError(section, unknown[0], f"Unknown keys in [{section}]: {names}")

    defaults = cls()
    values = {}
    for key, value in data.items():
        values[key] = _coerce(section, key, value, getattr(defaults, key))
    return cls(**values)


def _coerce(section: str, key: str, value: Any, default: Any) -> Any:
    # bool is checked first: it is also an int
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise StyleConfigError(section, key, f"'{key}' in [{section}] must be a boolean")
        return value
    if isinstance(default, int) and not isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, int):
            raise StyleConfigError(section, key, f"'{key}' in [{section}] must be an integer")
        _check_range(section, key, value)
        return value
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise StyleConfigError(section, key, f"'{key}' in [{section}] must be a finite number")
        _check_range(section, key, value)
        return float(value)
    if isinstance(default, str):
        if not isinstance(value, str):
            raise StyleConfigError(section, key, f"'{key}' in [{section}] must be a string")
        return value
    return value


def _check_range(section: str, key: str, value: float) -> None:
    if key in _UNIT_INTERVAL_FIELDS and not 0.0 <= value <= 1.0:
        raise StyleConfigError(section, key, f"'{key}' in [{section}] must be within [0, 1], got {value}")
    if key in _NON_NEGATIVE_FIELDS and value < 0:
        raise StyleConfigError(section, key, f"'{key}' in [{section}] must not be negative, got {value}")


def _import_tomllib():
    if sys.version_info >= (3, 11):
        import tomllib
    else:
        import tomli as tomllib
    return tomllib
