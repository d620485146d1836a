"""
Plane Processor

Turns raw plane candidates and manual boundaries into the canonical
set of SurfacePlane records for a measurement session:
- Confidence / area / distance filtering of detected candidates
- Pitch, azimuth and projected area from the surface normal
- Manual surface entry and boundary edits
- Merging and removal
"""

import uuid
from typing import Dict, Iterable, List, Optional, Sequence

import structlog

from models.errors import (
    InsufficientPointsError,
    InsufficientSourcesError,
    InvalidPointIndexError,
    NoActiveCalibrationError,
    NotFoundError,
)
from models.measurement import (
    VERTICAL,
    PlaneFilterConfig,
    PlaneMetrics,
    Point3D,
    RawPlaneCandidate,
    RoofMaterial,
    SurfacePlane,
    SurfaceSource,
    SurfaceType,
)
from services.calibration import CalibrationEngine
from services.classification import (
    MaterialDetector,
    SurfaceClassifier,
    classify_by_area,
    detect_material_unknown,
)
from services.polygon_math import (
    average_vectors,
    azimuth_angle_from_normal,
    pitch_angle_from_normal,
    polygon_area,
    polygon_perimeter,
    projected_area,
)

logger = structlog.get_logger()

MIN_BOUNDARY_POINTS = 3

# Operator-verified surfaces are fully trusted
MANUAL_CONFIDENCE = 1.0


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _to_points(points: Iterable) -> List[Point3D]:
    return [p if isinstance(p, Point3D) else Point3D.model_validate(p) for p in points]


def _check_index(surface_id: str, index: int, boundary: Sequence) -> None:
    if not 0 <= index < len(boundary):
        raise InvalidPointIndexError(surface_id, index, len(boundary))


class PlaneProcessor:
    """
    Holds the surface set of one measurement session.

    Surfaces are kept in insertion order. Ids are never reused, so a
    merged-away or removed surface cannot come back.
    """

    def __init__(
        self,
        config: Optional[PlaneFilterConfig] = None,
        calibration: Optional[CalibrationEngine] = None,
        classifier: SurfaceClassifier = classify_by_area,
        material_detector: MaterialDetector = detect_material_unknown,
    ):
        """
        Initialize the plane processor.

        Args:
            config: Candidate acceptance thresholds
            calibration: Session calibration, needed for pixel input
            classifier: Surface type strategy
            material_detector: Material strategy
        """
        self.config = config or PlaneFilterConfig()
        self.calibration = calibration
        self.classifier = classifier
        self.material_detector = material_detector
        self._surfaces: Dict[str, SurfacePlane] = {}

    @property
    def surfaces(self) -> List[SurfacePlane]:
        return list(self._surfaces.values())

    def get(self, surface_id: str) -> SurfacePlane:
        try:
            return self._surfaces[surface_id]
        except KeyError:
            raise NotFoundError(surface_id) from None

    def reset(self) -> None:
        """Drop every surface in the session."""
        count = len(self._surfaces)
        self._surfaces.clear()
        logger.info("surfaces_reset", removed=count)

    def _rejection_reason(self, candidate: RawPlaneCandidate) -> Optional[str]:
        if candidate.area < self.config.min_plane_area:
            return "area_below_minimum"
        if candidate.confidence < self.config.min_confidence:
            return "confidence_below_minimum"
        if candidate.distance > self.config.max_distance:
            return "beyond_max_distance"
        if len(candidate.boundary) < MIN_BOUNDARY_POINTS:
            return "insufficient_points"
        return None

    def ingest(self, candidates: Sequence) -> List[SurfacePlane]:
        """
        Filter detected candidates and add the survivors to the session.

        Args:
            candidates: RawPlaneCandidate records or equivalent dicts

        Returns:
            Newly accepted surfaces, in input order. Nothing is added
            to the session when any candidate raises.
        """
        staged: Dict[str, SurfacePlane] = {}

        for raw in candidates:
            candidate = (
                raw if isinstance(raw, RawPlaneCandidate)
                else RawPlaneCandidate.model_validate(raw)
            )

            reason = self._rejection_reason(candidate)
            if reason:
                logger.debug(
                    "candidate_rejected",
                    candidate_id=candidate.id,
                    reason=reason,
                    area=candidate.area,
                    confidence=candidate.confidence,
                    distance=candidate.distance,
                )
                continue

            pitch = pitch_angle_from_normal(candidate.normal)
            azimuth = azimuth_angle_from_normal(candidate.normal)
            metrics = PlaneMetrics(
                area=candidate.area,
                pitch_angle=pitch,
                azimuth_angle=azimuth,
                confidence=candidate.confidence,
            )

            surface_id = candidate.id or _new_id("plane")
            if surface_id in self._surfaces or surface_id in staged:
                surface_id = _new_id("plane")

            surface = SurfacePlane(
                id=surface_id,
                boundary=tuple(candidate.boundary),
                normal=candidate.normal,
                pitch_angle=pitch,
                azimuth_angle=azimuth,
                area=candidate.area,
                projected_area=projected_area(candidate.area, pitch),
                perimeter=polygon_perimeter(candidate.boundary),
                surface_type=self.classifier(metrics),
                material=self.material_detector(metrics),
                confidence=candidate.confidence,
                source=SurfaceSource.DETECTED,
            )
            staged[surface.id] = surface

        self._surfaces.update(staged)
        accepted = list(staged.values())

        logger.info(
            "candidates_ingested",
            received=len(candidates),
            accepted=len(accepted),
            total_surfaces=len(self._surfaces),
        )

        return accepted

    def add_manual_surface(
        self,
        boundary: Sequence,
        surface_type: SurfaceType,
        material: RoofMaterial = RoofMaterial.UNKNOWN,
        normal=None,
    ) -> SurfacePlane:
        """
        Add an operator-entered surface.

        Args:
            boundary: Ordered corner points in meters, at least 3
            surface_type: Operator-selected surface type
            material: Operator-selected material
            normal: Surface normal, vertical when omitted

        Returns:
            The new surface with confidence 1.0
        """
        points = _to_points(boundary)
        if len(points) < MIN_BOUNDARY_POINTS:
            raise InsufficientPointsError(len(points))

        normal_vector = _to_points([normal])[0] if normal is not None else VERTICAL.model_copy()
        pitch = pitch_angle_from_normal(normal_vector)
        area = polygon_area(points)

        surface = SurfacePlane(
            id=_new_id("manual"),
            boundary=tuple(points),
            normal=normal_vector,
            pitch_angle=pitch,
            azimuth_angle=azimuth_angle_from_normal(normal_vector),
            area=area,
            projected_area=projected_area(area, pitch),
            perimeter=polygon_perimeter(points),
            surface_type=SurfaceType(surface_type),
            material=RoofMaterial(material),
            confidence=MANUAL_CONFIDENCE,
            source=SurfaceSource.MANUAL,
        )
        self._surfaces[surface.id] = surface

        logger.info(
            "manual_surface_added",
            surface_id=surface.id,
            area=round(area, 3),
            points=len(points),
        )

        return surface

    def add_manual_surface_from_pixels(
        self,
        pixel_points: Sequence,
        surface_type: SurfaceType,
        material: RoofMaterial = RoofMaterial.UNKNOWN,
    ) -> SurfacePlane:
        """
        Add a surface from manual camera taps in pixel coordinates.

        Requires the session calibration; raises NoActiveCalibrationError
        when it has no valid result.
        """
        if self.calibration is None:
            raise NoActiveCalibrationError("Plane processor has no calibration engine")

        if len(pixel_points) < MIN_BOUNDARY_POINTS:
            raise InsufficientPointsError(len(pixel_points))

        points = self.calibration.calibrate_points(pixel_points)
        return self.add_manual_surface(points, surface_type, material)

    def _with_boundary(self, surface: SurfacePlane, boundary: List[Point3D]) -> SurfacePlane:
        area = polygon_area(boundary)
        return surface.model_copy(
            update={
                "boundary": tuple(boundary),
                "area": area,
                "projected_area": projected_area(area, surface.pitch_angle),
                "perimeter": polygon_perimeter(boundary),
            }
        )

    def edit_boundary(self, surface_id: str, new_boundary: Sequence) -> SurfacePlane:
        """
        Replace a surface boundary and recompute its areas.

        Args:
            surface_id: Surface to edit
            new_boundary: Ordered points, at least 3

        Returns:
            The updated surface
        """
        surface = self.get(surface_id)
        points = _to_points(new_boundary)
        if len(points) < MIN_BOUNDARY_POINTS:
            raise InsufficientPointsError(len(points))

        updated = self._with_boundary(surface, points)
        self._surfaces[surface_id] = updated

        logger.info(
            "boundary_edited",
            surface_id=surface_id,
            points=len(points),
            area=round(updated.area, 3),
        )

        return updated

    def add_point(self, surface_id: str, point, index: Optional[int] = None) -> SurfacePlane:
        """Insert a boundary point, appended when index is None."""
        boundary = list(self.get(surface_id).boundary)
        new_point = _to_points([point])[0]
        if index is None:
            boundary.append(new_point)
        else:
            boundary.insert(index, new_point)
        return self.edit_boundary(surface_id, boundary)

    def remove_point(self, surface_id: str, index: int) -> SurfacePlane:
        """Remove a boundary point; the boundary must keep 3 points."""
        boundary = list(self.get(surface_id).boundary)
        _check_index(surface_id, index, boundary)
        if len(boundary) - 1 < MIN_BOUNDARY_POINTS:
            raise InsufficientPointsError(len(boundary) - 1)
        del boundary[index]
        return self.edit_boundary(surface_id, boundary)

    def move_point(self, surface_id: str, index: int, point) -> SurfacePlane:
        """Replace the boundary point at index."""
        boundary = list(self.get(surface_id).boundary)
        _check_index(surface_id, index, boundary)
        boundary[index] = _to_points([point])[0]
        return self.edit_boundary(surface_id, boundary)

    def merge(self, surface_ids: Sequence[str]) -> SurfacePlane:
        """
        Merge surfaces into one.

        The merged boundary is the concatenation of source boundaries and
        is not a simple polygon, so areas are summed rather than
        recomputed. Type and material come from the first id given.

        Args:
            surface_ids: At least two distinct surface ids

        Returns:
            The merged surface, which replaces its sources
        """
        ordered_ids = list(dict.fromkeys(surface_ids))
        if len(ordered_ids) < 2:
            raise InsufficientSourcesError(ordered_ids)

        sources = [self.get(surface_id) for surface_id in ordered_ids]
        first = sources[0]

        normal = average_vectors([s.normal for s in sources])
        boundary = tuple(point for s in sources for point in s.boundary)

        merged = SurfacePlane(
            id=_new_id("merged"),
            boundary=boundary,
            normal=normal,
            pitch_angle=pitch_angle_from_normal(normal),
            azimuth_angle=azimuth_angle_from_normal(normal),
            area=sum(s.area for s in sources),
            projected_area=sum(s.projected_area for s in sources),
            perimeter=sum(s.perimeter for s in sources),
            surface_type=first.surface_type,
            material=first.material,
            confidence=min(s.confidence for s in sources),
            source=SurfaceSource.MERGED,
        )

        for surface_id in ordered_ids:
            del self._surfaces[surface_id]
        self._surfaces[merged.id] = merged

        logger.info(
            "surfaces_merged",
            sources=ordered_ids,
            merged_id=merged.id,
            area=round(merged.area, 3),
            confidence=merged.confidence,
        )

        return merged

    def remove(self, surface_id: str) -> None:
        """Delete a surface from the session."""
        if surface_id not in self._surfaces:
            raise NotFoundError(surface_id)
        del self._surfaces[surface_id]
        logger.info("surface_removed", surface_id=surface_id)

    def is_acceptable(self, surface: SurfacePlane) -> bool:
        """Whether a surface meets the session's area and confidence thresholds."""
        return (
            surface.area >= self.config.min_plane_area
            and surface.confidence >= self.config.min_confidence
        )
