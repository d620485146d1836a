"""
Measurement Aggregator

Combines the validated surfaces of a session into one immutable
measurement document:
- Total projected and surface area, roofing squares
- Area-weighted quality score and dominant pitch
- Blocking errors, warnings and recommendations
- JSON / CSV export of the finished document
"""

import csv
import io
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

import structlog

from models.errors import (
    EmptyMeasurementError,
    MeasurementValidationError,
    UnsupportedFormatError,
)
from models.measurement import (
    AggregationConfig,
    ConfidenceLevel,
    MeasurementDocument,
    PropertyType,
    SurfaceBreakdown,
    SurfacePlane,
    ValidationReport,
)
from services.polygon_math import is_self_intersecting, pitch_to_rise_over_12

logger = structlog.get_logger()

SQFT_PER_M2 = 10.7639
SQFT_PER_SQUARE = 100

# Minimum surface count a complete capture usually has
EXPECTED_SURFACE_COUNT: Dict[PropertyType, int] = {
    PropertyType.RESIDENTIAL: 2,
    PropertyType.MULTI_FAMILY: 2,
    PropertyType.COMMERCIAL: 1,
    PropertyType.OUTBUILDING: 1,
}

HIGH_CONFIDENCE = 0.85
MEDIUM_CONFIDENCE = 0.65


def calculate_quality_score(surfaces: List[SurfacePlane]) -> float:
    """
    Area-weighted mean of surface confidences.

    Larger surfaces influence the score more. Falls back to the plain
    mean when no surface has area.

    Args:
        surfaces: Surfaces of the session

    Returns:
        Score in [0, 1]
    """
    if not surfaces:
        return 0.0

    total_area = sum(s.area for s in surfaces)
    if total_area <= 0:
        return sum(s.confidence for s in surfaces) / len(surfaces)

    score = sum(s.confidence * s.area for s in surfaces) / total_area
    return min(1.0, max(0.0, score))


def confidence_level_for(score: float) -> ConfidenceLevel:
    if score >= HIGH_CONFIDENCE:
        return ConfidenceLevel.HIGH
    if score >= MEDIUM_CONFIDENCE:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MeasurementAggregator:
    """Produces the final measurement record for a session."""

    def __init__(
        self,
        config: Optional[AggregationConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or AggregationConfig()
        self.clock = clock or _utcnow

    def validate(
        self,
        surfaces: List[SurfacePlane],
        overrides: Iterable[str] = frozenset(),
        property_type: Optional[PropertyType] = None,
    ) -> ValidationReport:
        """
        Run the validation rules without producing a document.

        Args:
            surfaces: Surfaces to check
            overrides: Surface ids the operator accepted despite low confidence
            property_type: Optional property category

        Returns:
            ValidationReport with errors, warnings and recommendations
        """
        cfg = self.config
        overrides = frozenset(overrides)
        report = ValidationReport(quality_score=calculate_quality_score(surfaces))

        for surface in surfaces:
            if surface.area <= 0:
                report.errors.append(
                    f"Invalid area for surface {surface.id}: {surface.area:.2f} sq m"
                )

            if surface.confidence < cfg.min_surface_confidence and surface.id not in overrides:
                report.errors.append(
                    f"Low confidence for surface {surface.id}: "
                    f"{surface.confidence * 100:.1f}% (operator override required)"
                )

            if 0 < surface.area < cfg.small_surface_area:
                report.warnings.append(
                    f"Very small surface {surface.id}: {surface.area:.2f} sq m - may be measurement noise"
                )
            elif surface.area > cfg.large_surface_area:
                report.warnings.append(
                    f"Unusually large surface {surface.id}: {surface.area:.2f} sq m - verify accuracy"
                )

            if len(surface.boundary) < cfg.min_boundary_points:
                report.warnings.append(
                    f"Low boundary point density for surface {surface.id} - may affect accuracy"
                )

            if is_self_intersecting(surface.boundary):
                report.warnings.append(
                    f"Boundary of surface {surface.id} crosses itself - verify corner order"
                )

            if surface.area > 0:
                discrepancy = (surface.area - surface.projected_area) / surface.area
                if discrepancy > cfg.max_projection_discrepancy:
                    report.warnings.append(
                        f"Large discrepancy between actual and projected area for surface "
                        f"{surface.id} - verify pitch"
                    )

            if surface.pitch_angle > cfg.steep_pitch_degrees:
                report.recommendations.append(
                    f"Steep roof detected ({surface.pitch_angle:.1f}°) - consider safety measures"
                )
            elif surface.pitch_angle < cfg.flat_pitch_degrees:
                report.recommendations.append(
                    f"Nearly flat roof detected ({surface.pitch_angle:.1f}°) - verify drainage requirements"
                )

        if report.quality_score < cfg.quality_warning_threshold:
            report.warnings.append(
                f"Overall measurement quality is low ({report.quality_score:.2f})"
            )
            report.recommendations.append(
                "Consider remeasuring with better lighting and more stable movement"
            )

        expected = EXPECTED_SURFACE_COUNT.get(property_type, 1)
        if len(surfaces) < expected:
            label = property_type.value if property_type else "typical"
            report.warnings.append(
                f"Only {len(surfaces)} surface(s) captured; a {label} roof "
                f"usually has at least {expected}"
            )

        if len({s.material for s in surfaces}) > 1:
            report.recommendations.append(
                "Multiple roof materials detected - plan material transitions carefully"
            )

        return report

    def finalize(
        self,
        surfaces: List[SurfacePlane],
        session_id: str,
        operator_id: str,
        property_type: Optional[PropertyType] = None,
        overrides: Iterable[str] = frozenset(),
        allow_errors: bool = False,
    ) -> MeasurementDocument:
        """
        Build the immutable measurement document for a session.

        Args:
            surfaces: Validated surfaces
            session_id: Measurement session identifier
            operator_id: Operator who performed the measurement
            property_type: Optional property category
            overrides: Surface ids accepted despite low confidence
            allow_errors: Record blocking errors instead of raising

        Returns:
            MeasurementDocument
        """
        if not surfaces:
            raise EmptyMeasurementError(session_id)

        report = self.validate(surfaces, overrides, property_type)
        if report.errors and not allow_errors:
            logger.info(
                "measurement_blocked",
                session_id=session_id,
                errors=len(report.errors),
            )
            raise MeasurementValidationError(report.errors, report.warnings)

        # Private copies keep the document independent of later edits
        owned = [s.model_copy(deep=True) for s in surfaces]

        total_area = sum(s.projected_area for s in owned)
        total_surface_area = sum(s.area for s in owned)

        if total_surface_area > 0:
            dominant_pitch = sum(s.pitch_angle * s.area for s in owned) / total_surface_area
        else:
            dominant_pitch = 0.0
        dominant_pitch = min(90.0, max(0.0, dominant_pitch))

        breakdown = [
            SurfaceBreakdown(
                surface_id=s.id,
                surface_type=s.surface_type,
                material=s.material,
                area=s.area,
                projected_area=s.projected_area,
                pitch_angle=s.pitch_angle,
                confidence=s.confidence,
                area_share=(s.area / total_surface_area) if total_surface_area > 0 else 0.0,
            )
            for s in owned
        ]

        total_sqft = total_area * SQFT_PER_M2

        document = MeasurementDocument(
            id=f"measurement_{uuid.uuid4().hex[:12]}",
            session_id=session_id,
            operator_id=operator_id,
            property_type=property_type,
            created_at=self.clock(),
            surfaces=tuple(owned),
            breakdown=tuple(breakdown),
            total_area=total_area,
            total_surface_area=total_surface_area,
            total_area_sqft=round(total_sqft, 2),
            roofing_squares=round(total_sqft / SQFT_PER_SQUARE, 2),
            dominant_pitch_degrees=round(dominant_pitch, 1),
            dominant_pitch_12=round(min(pitch_to_rise_over_12(dominant_pitch), 1e6), 1),
            quality_score=report.quality_score,
            confidence_level=confidence_level_for(report.quality_score),
            errors=tuple(report.errors),
            warnings=tuple(report.warnings),
            recommendations=tuple(report.recommendations),
            is_valid=report.is_valid,
        )

        logger.info(
            "measurement_finalized",
            document_id=document.id,
            session_id=session_id,
            surfaces=len(owned),
            total_area=round(total_area, 2),
            quality=round(document.quality_score, 3),
            warnings=len(document.warnings),
        )

        return document


def export_document(document: MeasurementDocument, fmt: str) -> str:
    """
    Serialize a finished measurement document.

    Args:
        document: Finalized measurement
        fmt: json or csv

    Returns:
        Serialized text
    """
    if fmt == "json":
        return document.model_dump_json(indent=2)

    if fmt == "csv":
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow([
            "Surface ID", "Type", "Material", "Area (sq m)",
            "Projected Area (sq m)", "Pitch (°)", "Azimuth (°)", "Confidence",
        ])
        for s in document.surfaces:
            writer.writerow([
                s.id,
                s.surface_type.value,
                s.material.value,
                f"{s.area:.2f}",
                f"{s.projected_area:.2f}",
                f"{s.pitch_angle:.1f}",
                f"{s.azimuth_angle:.1f}",
                f"{s.confidence * 100:.1f}%",
            ])
        writer.writerow([
            "TOTAL", "", "",
            f"{document.total_surface_area:.2f}",
            f"{document.total_area:.2f}",
            "", "", "",
        ])
        return buffer.getvalue()

    raise UnsupportedFormatError(fmt, "export")
