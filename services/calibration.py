"""
Calibration Engine

Derives the pixel-to-meter scale factor from a reference object of
known size and holds the single active calibration for a session.

Quality is scored from aspect-ratio consistency between the measured
and real dimensions; off-angle or cropped captures score low and are
rejected without disturbing the active calibration.
"""

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

import structlog

from models.errors import (
    InvalidMeasurementError,
    NoActiveCalibrationError,
    UnknownReferenceError,
)
from models.measurement import (
    CalibrationReference,
    CalibrationResult,
    CalibrationStatus,
    Point3D,
    ReferenceKind,
    Size2D,
)

logger = structlog.get_logger()

# Acceptance threshold for calibration quality
MIN_QUALITY_SCORE = 0.7

# Calibrations older than this are reported as stale
CALIBRATION_MAX_AGE_HOURS = float(os.environ.get("ROOF_CALIBRATION_MAX_AGE_HOURS", "24"))

CALIBRATION_PATH = Path(
    os.environ.get("ROOF_CALIBRATION_PATH", "/tmp/roofmeasure/calibration.json")
)

LOW_QUALITY_MESSAGE = (
    "Calibration quality too low. Please remeasure the reference object more carefully."
)

# Known real-world dimensions in meters (width, height)
STANDARD_REFERENCES: Dict[ReferenceKind, Size2D] = {
    ReferenceKind.BUSINESS_CARD: Size2D(width=0.0889, height=0.0508),  # 3.5" x 2"
    ReferenceKind.CREDIT_CARD: Size2D(width=0.0856, height=0.0539),
    ReferenceKind.COIN: Size2D(width=0.02426, height=0.02426),  # US quarter diameter
    ReferenceKind.PENNY: Size2D(width=0.01955, height=0.01955),
    ReferenceKind.PHONE: Size2D(width=0.0715, height=0.1468),  # iPhone 14 body
    ReferenceKind.RULER: Size2D(width=0.0254, height=0.0254),  # 1 inch
    ReferenceKind.RULER_CM: Size2D(width=0.01, height=0.01),
}

REFERENCE_LABELS: Dict[ReferenceKind, tuple] = {
    ReferenceKind.BUSINESS_CARD: ("Business Card", '3.5" × 2"'),
    ReferenceKind.CREDIT_CARD: ("Credit Card", "85.6mm × 53.9mm"),
    ReferenceKind.COIN: ("US Quarter", "24.3mm diameter"),
    ReferenceKind.PENNY: ("US Penny", "19.6mm diameter"),
    ReferenceKind.PHONE: ("iPhone 14", "71.5mm × 146.8mm"),
    ReferenceKind.RULER: ("1 Inch", "25.4mm"),
    ReferenceKind.RULER_CM: ("1 Centimeter", "10mm"),
}

# Identifiers used by older capture clients
REFERENCE_ALIASES: Dict[str, ReferenceKind] = {
    "us_quarter": ReferenceKind.COIN,
    "us_penny": ReferenceKind.PENNY,
    "iphone_14": ReferenceKind.PHONE,
    "ruler_inch": ReferenceKind.RULER,
}


def parse_reference_kind(value: Union[str, ReferenceKind]) -> Optional[ReferenceKind]:
    """Resolve a kind or alias string; None when unrecognized."""
    if isinstance(value, ReferenceKind):
        return value
    key = str(value).strip().lower()
    if key in REFERENCE_ALIASES:
        return REFERENCE_ALIASES[key]
    try:
        return ReferenceKind(key)
    except ValueError:
        return None


def compute_quality_score(measured: Size2D, real: Size2D) -> float:
    """
    Score aspect-ratio agreement between measured and real dimensions.

    Args:
        measured: Measured pixel size
        real: Known real-world size

    Returns:
        Score in [0, 1], 1.0 for perfectly proportional measurements
    """
    pixel_aspect = measured.width / measured.height
    real_aspect = real.width / real.height
    aspect_error = abs(pixel_aspect - real_aspect) / real_aspect
    return max(0.0, 1.0 - aspect_error)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CalibrationStore:
    """Persistence collaborator for the active calibration."""

    def save(self, result: CalibrationResult) -> None:
        raise NotImplementedError

    def load(self) -> Optional[CalibrationResult]:
        raise NotImplementedError

    def delete(self) -> None:
        raise NotImplementedError


class InMemoryCalibrationStore(CalibrationStore):
    """Keeps the persisted calibration in process memory."""

    def __init__(self):
        self._data: Optional[str] = None

    def save(self, result: CalibrationResult) -> None:
        self._data = result.model_dump_json()

    def load(self) -> Optional[CalibrationResult]:
        if self._data is None:
            return None
        return CalibrationResult.model_validate_json(self._data)

    def delete(self) -> None:
        self._data = None


class JsonFileCalibrationStore(CalibrationStore):
    """Persists the active calibration as a JSON document on disk."""

    def __init__(self, path: Union[str, Path] = CALIBRATION_PATH):
        self.path = Path(path)

    def save(self, result: CalibrationResult) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(result.model_dump_json(indent=2))

    def load(self) -> Optional[CalibrationResult]:
        if not self.path.exists():
            return None
        return CalibrationResult.model_validate_json(self.path.read_text())

    def delete(self) -> None:
        if self.path.exists():
            self.path.unlink()


class CalibrationEngine:
    """
    Produces and holds the active pixel-to-meter conversion.

    One engine per measurement session; pass it explicitly to any
    component that needs scale conversion.
    """

    def __init__(
        self,
        store: Optional[CalibrationStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
        max_age_hours: float = CALIBRATION_MAX_AGE_HOURS,
    ):
        """
        Initialize the calibration engine.

        Args:
            store: Persistence collaborator, in-memory when omitted
            clock: Returns the current aware datetime, for age checks
            max_age_hours: Staleness window for calibrations
        """
        self.store = store if store is not None else InMemoryCalibrationStore()
        self.clock = clock or _utcnow
        self.max_age_hours = max_age_hours
        self._active: Optional[CalibrationResult] = None

    @property
    def active(self) -> Optional[CalibrationResult]:
        return self._active

    def load(self) -> bool:
        """
        Restore a persisted calibration if it is still usable.

        Returns:
            True if a calibration was restored
        """
        saved = self.store.load()
        if saved is None:
            return False

        age = self._age_hours(saved)
        if age > self.max_age_hours or saved.quality_score < MIN_QUALITY_SCORE:
            logger.info(
                "saved_calibration_discarded",
                age_hours=round(age, 2),
                quality=saved.quality_score,
            )
            return False

        self._active = saved
        logger.info("calibration_restored", pixels_per_meter=saved.pixels_per_meter)
        return True

    def calibrate(
        self,
        reference_kind: Union[str, ReferenceKind],
        measured_pixel_size: Union[Size2D, dict],
        real_world_size: Optional[Union[Size2D, dict]] = None,
        capture_distance: Optional[float] = None,
    ) -> CalibrationResult:
        """
        Calibrate using a reference object.

        Args:
            reference_kind: Standard reference kind (or alias), or custom
            measured_pixel_size: Measured width/height in pixels
            real_world_size: Known size in meters, overrides the standard table
            capture_distance: Optional camera distance in meters

        Returns:
            CalibrationResult, is_valid=False when quality is too low
        """
        pixel_width, pixel_height = _dimensions(measured_pixel_size)
        if pixel_width <= 0 or pixel_height <= 0:
            raise InvalidMeasurementError(
                "Invalid pixel measurements", width=pixel_width, height=pixel_height
            )
        measured = Size2D(width=pixel_width, height=pixel_height)

        kind = parse_reference_kind(reference_kind)
        if real_world_size is not None:
            real_width, real_height = _dimensions(real_world_size)
            if real_width <= 0 or real_height <= 0:
                raise InvalidMeasurementError(
                    "Invalid real-world size", width=real_width, height=real_height
                )
            real = Size2D(width=real_width, height=real_height)
            if kind is None:
                kind = ReferenceKind.CUSTOM
        elif kind is not None and kind in STANDARD_REFERENCES:
            real = STANDARD_REFERENCES[kind]
        else:
            raise UnknownReferenceError(reference_kind)

        pixels_per_meter = measured.width / real.width
        quality_score = compute_quality_score(measured, real)
        is_valid = quality_score >= MIN_QUALITY_SCORE

        reference = CalibrationReference(
            kind=kind,
            real_world_size=real,
            measured_pixel_size=measured,
            confidence=quality_score,
            captured_at=self.clock(),
            capture_distance=capture_distance,
        )

        result = CalibrationResult(
            pixels_per_meter=pixels_per_meter,
            quality_score=quality_score,
            is_valid=is_valid,
            errors=() if is_valid else (LOW_QUALITY_MESSAGE,),
            reference=reference,
        )

        if is_valid:
            self._active = result
            self.store.save(result)
            logger.info(
                "calibration_accepted",
                reference=kind.value,
                pixels_per_meter=pixels_per_meter,
                quality=round(quality_score, 3),
            )
        else:
            logger.info(
                "calibration_rejected",
                reference=kind.value,
                quality=round(quality_score, 3),
                threshold=MIN_QUALITY_SCORE,
            )

        return result

    def _require_active(self) -> CalibrationResult:
        if self._active is None or not self._active.is_valid:
            raise NoActiveCalibrationError()
        return self._active

    def pixels_to_meters(self, pixel_distance: float) -> float:
        """Convert a pixel distance to meters."""
        return pixel_distance / self._require_active().pixels_per_meter

    def meters_to_pixels(self, meter_distance: float) -> float:
        """Convert a distance in meters to pixels."""
        return meter_distance * self._require_active().pixels_per_meter

    def pixel_area_to_square_meters(self, pixel_area: float) -> float:
        """Convert an area in square pixels to square meters."""
        return pixel_area / self._require_active().pixels_per_meter ** 2

    def calibrate_points(self, points: Sequence) -> List[Point3D]:
        """
        Convert manual pixel taps into metric points on the z=0 plane.

        Args:
            points: Pixel coordinates as (x, y) tuples or objects with x/y

        Returns:
            Points in meters
        """
        scale = self._require_active().pixels_per_meter
        converted = []
        for point in points:
            if isinstance(point, (list, tuple)):
                px, py = point[0], point[1]
            elif isinstance(point, dict):
                px, py = point["x"], point["y"]
            else:
                px, py = point.x, point.y
            converted.append(Point3D(x=px / scale, y=py / scale, z=0.0))
        return converted

    def get_status(self) -> CalibrationStatus:
        """Report whether the active calibration is usable and how old it is."""
        if self._active is None:
            return CalibrationStatus(is_calibrated=False, quality=0.0, age_hours=0.0)

        age = self._age_hours(self._active)
        is_stale = age > self.max_age_hours

        return CalibrationStatus(
            is_calibrated=self._active.is_valid and not is_stale,
            quality=self._active.quality_score,
            age_hours=age,
            is_stale=is_stale,
            reference=self._active.reference,
        )

    def clear(self) -> None:
        """Discard the active calibration and its persisted copy."""
        self._active = None
        self.store.delete()
        logger.info("calibration_cleared")

    @staticmethod
    def standard_references() -> List[Dict[str, str]]:
        """List standard reference objects for the calibration UI."""
        return [
            {"id": kind.value, "name": name, "size": size}
            for kind, (name, size) in REFERENCE_LABELS.items()
        ]

    def _age_hours(self, result: CalibrationResult) -> float:
        captured = result.reference.captured_at
        if captured.tzinfo is None:
            captured = captured.replace(tzinfo=timezone.utc)
        elapsed = self.clock() - captured
        return max(0.0, elapsed.total_seconds() / 3600)


def _dimensions(size) -> tuple:
    if isinstance(size, dict):
        return float(size["width"]), float(size["height"])
    if isinstance(size, (list, tuple)):
        return float(size[0]), float(size[1])
    return float(size.width), float(size.height)
