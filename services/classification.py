"""
Surface Classification Strategies

Pluggable heuristics for surface type and material. PlaneProcessor takes
any callable with the matching signature, so a learned model can replace
these without changing the processor.
"""

from typing import Callable

from models.measurement import PlaneMetrics, RoofMaterial, SurfaceType

PRIMARY_AREA_THRESHOLD = 50.0  # square meters
SECONDARY_AREA_THRESHOLD = 10.0

FLAT_PITCH_DEGREES = 5.0
STEEP_PITCH_DEGREES = 45.0
LARGE_METAL_AREA = 100.0

SurfaceClassifier = Callable[[PlaneMetrics], SurfaceType]
MaterialDetector = Callable[[PlaneMetrics], RoofMaterial]


def classify_by_area(metrics: PlaneMetrics) -> SurfaceType:
    """Provisional area-threshold classification."""
    if metrics.area > PRIMARY_AREA_THRESHOLD:
        return SurfaceType.PRIMARY
    if metrics.area > SECONDARY_AREA_THRESHOLD:
        return SurfaceType.SECONDARY
    return SurfaceType.OTHER


def detect_material_unknown(metrics: PlaneMetrics) -> RoofMaterial:
    """Capture-time default: material cannot be seen from geometry alone."""
    return RoofMaterial.UNKNOWN


def detect_material_from_geometry(metrics: PlaneMetrics) -> RoofMaterial:
    """
    Guess material from pitch and size.

    Low slopes need membrane roofing, steep slopes are almost always
    shingled, very large moderate slopes are typically metal. Anything
    else keeps its current material.
    """
    if metrics.pitch_angle < FLAT_PITCH_DEGREES:
        return RoofMaterial.FLAT
    if metrics.pitch_angle > STEEP_PITCH_DEGREES:
        return RoofMaterial.SHINGLE
    if metrics.area > LARGE_METAL_AREA:
        return RoofMaterial.METAL
    return metrics.current_material
