"""
Roof Measurement Errors

Exception types raised by the measurement core. Every error is locally
recoverable and carries the offending input so callers can build a
user-facing message.
"""

from typing import Any, List, Optional, Sequence


class MeasurementError(Exception):
    """Base class for all measurement core failures."""
    pass


# --- Calibration ---

class InvalidMeasurementError(MeasurementError):
    """Reference object measured with a non-positive dimension."""

    def __init__(self, message: str, width: Optional[float] = None, height: Optional[float] = None):
        super().__init__(message)
        self.width = width
        self.height = height


class UnknownReferenceError(MeasurementError):
    """Reference kind not in the standard table and no custom size given."""

    def __init__(self, reference_kind: Any):
        super().__init__(f"Unknown reference type: {reference_kind}")
        self.reference_kind = reference_kind


class NoActiveCalibrationError(MeasurementError):
    """Conversion attempted without a valid calibration."""

    def __init__(self, message: str = "No valid calibration available"):
        super().__init__(message)


# --- Plane editing ---

class InsufficientPointsError(MeasurementError):
    """A surface boundary needs at least three points."""

    def __init__(self, point_count: int, minimum: int = 3):
        super().__init__(
            f"Surface boundary needs at least {minimum} points, got {point_count}"
        )
        self.point_count = point_count
        self.minimum = minimum


class InsufficientSourcesError(MeasurementError):
    """Merge needs at least two source surfaces."""

    def __init__(self, surface_ids: Sequence[str]):
        super().__init__(
            f"Merge needs at least 2 surfaces, got {len(surface_ids)}"
        )
        self.surface_ids = list(surface_ids)


class NotFoundError(MeasurementError):
    """Requested surface does not exist in the session."""

    def __init__(self, surface_id: str):
        super().__init__(f"Surface not found: {surface_id}")
        self.surface_id = surface_id


class InvalidPointIndexError(MeasurementError):
    """Boundary point index outside the surface's point list."""

    def __init__(self, surface_id: str, index: int, point_count: int):
        super().__init__(
            f"Point index {index} out of range for surface {surface_id} "
            f"with {point_count} points"
        )
        self.surface_id = surface_id
        self.index = index
        self.point_count = point_count


# --- Numeric ---

class DegenerateVectorError(MeasurementError):
    """Vector too short to define a direction."""

    def __init__(self, vector: Any):
        super().__init__(f"Degenerate vector (zero length): {vector}")
        self.vector = vector


class EmptyInputError(MeasurementError):
    """Operation needs at least one input element."""
    pass


# --- Aggregation ---

class EmptyMeasurementError(MeasurementError):
    """Finalize attempted with zero surfaces."""

    def __init__(self, session_id: Optional[str] = None):
        super().__init__("At least one surface is required to finalize a measurement")
        self.session_id = session_id


class MeasurementValidationError(MeasurementError):
    """Blocking validation errors prevent finalizing the measurement."""

    def __init__(self, errors: List[str], warnings: Optional[List[str]] = None):
        super().__init__(f"Invalid surfaces: {', '.join(errors)}")
        self.errors = list(errors)
        self.warnings = list(warnings or [])


# --- Geometry I/O ---

class UnsupportedFormatError(MeasurementError):
    """Export or import format not implemented."""

    def __init__(self, fmt: Any, operation: str = "export"):
        super().__init__(f"{operation.capitalize()} format {fmt} not supported")
        self.format = fmt
        self.operation = operation


class InvalidGeometryError(MeasurementError):
    """Geometry failed validation and must not be exported."""

    def __init__(self, geometry_id: str):
        super().__init__(f"Geometry {geometry_id} failed validation")
        self.geometry_id = geometry_id
