"""Exceptions for layerview configuration and attribute handling."""

from __future__ import annotations


class StyleConfigError(Exception):
    """Style configuration could not be loaded or failed validation.

    Raised when a TOML configuration section contains unknown keys,
    values of the wrong type, or values outside their allowed range.

    Attributes:
        section: Dotted name of the offending section (e.g. "layers.2")
        key: Offending key, or None for section-level problems
        message: Human-readable error message
    """

    def __init__(
        self,
        section: str,
        key: str | None = None,
        message: str | None = None,
    ) -> None:
        self.section = section
        self.key = key
        self.message = message or self._default_message()
        super().__init__(self.message)

    def _default_message(self) -> str:
        if self.key is None:
            return f"Invalid style configuration in [{self.section}]"
        return f"Invalid value for '{self.key}' in [{self.section}]"


class AttributeShapeError(Exception):
    """Node attributes do not have the shape an operation requires.

    Raised by the ``require_*`` accessors in :mod:`layerview.attributes`
    and caught by the marker builders, which degrade instead of failing.

    Attributes:
        node_id: Id of the offending node
        expected: Name of the attribute shape that was required
        actual: Name of the attribute shape the node carries
    """

    def __init__(self, node_id: int, expected: str, actual: str) -> None:
        self.node_id = node_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Node {node_id} carries {actual}, but {expected} is required"
        )
