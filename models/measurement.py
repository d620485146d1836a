"""
Roof Measurement Data Models

Defines the core data structures for calibration, roof surfaces,
3D geometry and finalized measurement documents.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ReferenceKind(str, Enum):
    """Reference objects usable for calibration"""
    BUSINESS_CARD = "business_card"
    CREDIT_CARD = "credit_card"
    COIN = "coin"
    PENNY = "penny"
    PHONE = "phone"
    RULER = "ruler"
    RULER_CM = "ruler_cm"
    CUSTOM = "custom"


class SurfaceType(str, Enum):
    """Roof surface classification"""
    PRIMARY = "primary"
    SECONDARY = "secondary"
    DORMER = "dormer"
    HIP = "hip"
    CHIMNEY = "chimney"
    OTHER = "other"


class RoofMaterial(str, Enum):
    """Roofing material classification"""
    SHINGLE = "shingle"
    TILE = "tile"
    METAL = "metal"
    FLAT = "flat"
    UNKNOWN = "unknown"


class SurfaceSource(str, Enum):
    """How a surface entered the session"""
    DETECTED = "detected"
    MANUAL = "manual"
    MERGED = "merged"


class ConfidenceLevel(str, Enum):
    """Confidence level classification"""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class PropertyType(str, Enum):
    """Property category used for the expected surface count heuristic"""
    RESIDENTIAL = "residential"
    MULTI_FAMILY = "multi_family"
    COMMERCIAL = "commercial"
    OUTBUILDING = "outbuilding"


class ExportFormat(str, Enum):
    """Geometry interchange formats"""
    JSON = "json"
    OBJ = "obj"
    PLY = "ply"


class LevelOfDetail(str, Enum):
    """Mesh level of detail"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Pydantic models shared across services

class Point3D(BaseModel):
    """A captured corner/vertex. Units depend on calibration."""
    model_config = ConfigDict(frozen=True)

    x: float
    y: float
    z: float = 0.0

    @model_validator(mode="before")
    @classmethod
    def _from_sequence(cls, data: Any) -> Any:
        # Accept (x, y) and (x, y, z) tuples from capture collaborators
        if isinstance(data, (list, tuple)):
            if len(data) not in (2, 3):
                raise ValueError(f"Point needs 2 or 3 coordinates, got {len(data)}")
            return dict(zip(("x", "y", "z"), data))
        return data

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)


Vector3 = Point3D

VERTICAL = Point3D(x=0.0, y=1.0, z=0.0)


class Size2D(BaseModel):
    """Width/height pair, both strictly positive"""
    model_config = ConfigDict(frozen=True)

    width: float = Field(gt=0)
    height: float = Field(gt=0)


class CalibrationReference(BaseModel):
    """Reference object measurement backing a calibration"""
    model_config = ConfigDict(frozen=True)

    kind: ReferenceKind
    real_world_size: Size2D = Field(description="Known dimensions in meters")
    measured_pixel_size: Size2D = Field(description="Measured dimensions in pixels")
    confidence: float = Field(ge=0, le=1)
    captured_at: datetime
    capture_distance: Optional[float] = Field(None, ge=0, description="Camera distance in meters")


class CalibrationResult(BaseModel):
    """Pixel to meter conversion derived from a reference object"""
    model_config = ConfigDict(frozen=True)

    pixels_per_meter: float = Field(gt=0)
    quality_score: float = Field(ge=0, le=1)
    is_valid: bool
    errors: Tuple[str, ...] = ()
    reference: CalibrationReference


class CalibrationStatus(BaseModel):
    """Snapshot of the active calibration"""
    is_calibrated: bool
    quality: float = Field(ge=0, le=1)
    age_hours: float = Field(ge=0)
    is_stale: bool = False
    reference: Optional[CalibrationReference] = None


class RawPlaneCandidate(BaseModel):
    """Plane candidate reported by the AR collaborator"""
    id: Optional[str] = None
    boundary: List[Point3D] = Field(default_factory=list)
    normal: Point3D = Field(default_factory=lambda: VERTICAL.model_copy())
    confidence: float = Field(ge=0, le=1)
    distance: float = Field(ge=0, description="Distance from camera in meters")
    area: float = Field(ge=0, description="Reported area in square meters")


class SurfacePlane(BaseModel):
    """Individual validated roof surface"""
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "id": "plane_3f2a9c1b7d04",
                "boundary": [
                    {"x": 0, "y": 0, "z": 0},
                    {"x": 10, "y": 0, "z": 0},
                    {"x": 10, "y": 8, "z": 0},
                    {"x": 0, "y": 8, "z": 0},
                ],
                "normal": {"x": 0, "y": 1, "z": 0},
                "pitch_angle": 0.0,
                "azimuth_angle": 0.0,
                "area": 80.0,
                "projected_area": 80.0,
                "perimeter": 36.0,
                "surface_type": "primary",
                "material": "shingle",
                "confidence": 1.0,
                "source": "manual",
            }
        },
    )

    id: str
    boundary: Tuple[Point3D, ...] = Field(min_length=3)
    normal: Point3D
    pitch_angle: float = Field(ge=0, le=90, description="Pitch angle in degrees")
    azimuth_angle: float = Field(gt=-180, le=180, description="Azimuth in degrees")
    area: float = Field(ge=0, description="Planar area in square meters")
    projected_area: float = Field(ge=0, description="Area seen from above")
    perimeter: float = Field(0.0, ge=0, description="Boundary length in meters")
    surface_type: SurfaceType = SurfaceType.OTHER
    material: RoofMaterial = RoofMaterial.UNKNOWN
    confidence: float = Field(ge=0, le=1)
    source: SurfaceSource = SurfaceSource.DETECTED


# 3D geometry

class Vertex3D(BaseModel):
    x: float
    y: float
    z: float


class Face3D(BaseModel):
    """Polygon face referencing vertex indices of its owning geometry"""
    vertices: List[int] = Field(min_length=3)
    material_index: int = Field(0, ge=0)


class BoundingBox(BaseModel):
    """Axis-aligned bounding box"""
    min: Vertex3D
    max: Vertex3D


class Material3D(BaseModel):
    """Render material for a roof surface"""
    id: str
    name: str
    type: RoofMaterial
    color: str
    opacity: float = Field(1.0, ge=0, le=1)
    roughness: float = Field(0.5, ge=0, le=1)
    metallic: float = Field(0.0, ge=0, le=1)


class GeometryMetadata(BaseModel):
    source: str = "ar_scan"
    complexity: LevelOfDetail = LevelOfDetail.MEDIUM
    total_area: float = Field(0.0, ge=0)
    is_valid: bool = True


class Geometry3D(BaseModel):
    """Extruded solid derived from one surface"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    plane_id: Optional[str] = None
    vertices: List[Vertex3D]
    faces: List[Face3D]
    materials: List[Material3D] = Field(default_factory=list)
    bounding_box: BoundingBox
    metadata: GeometryMetadata = Field(default_factory=GeometryMetadata)


class ModelTransform(BaseModel):
    """Model placement, identity by default"""
    position: Vertex3D = Field(default_factory=lambda: Vertex3D(x=0, y=0, z=0))
    rotation: Vertex3D = Field(default_factory=lambda: Vertex3D(x=0, y=0, z=0))
    scale: Vertex3D = Field(default_factory=lambda: Vertex3D(x=1, y=1, z=1))


class Model3D(BaseModel):
    """Collection of geometries exclusively owned by one model"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: Optional[str] = None
    geometries: List[Geometry3D] = Field(default_factory=list)
    transform: ModelTransform = Field(default_factory=ModelTransform)
    version: str = "1.0.0"
    total_vertices: int = Field(0, ge=0)
    total_faces: int = Field(0, ge=0)
    total_geometries: int = Field(0, ge=0)


# Finalized measurement

class SurfaceBreakdown(BaseModel):
    """Per-surface line of a measurement document"""
    model_config = ConfigDict(frozen=True)

    surface_id: str
    surface_type: SurfaceType
    material: RoofMaterial
    area: float = Field(ge=0)
    projected_area: float = Field(ge=0)
    pitch_angle: float = Field(ge=0, le=90)
    confidence: float = Field(ge=0, le=1)
    area_share: float = Field(ge=0, le=1, description="Share of total surface area")


class MeasurementDocument(BaseModel):
    """Complete, immutable measurement for one session"""
    model_config = ConfigDict(frozen=True)

    id: str
    session_id: str
    operator_id: str
    property_type: Optional[PropertyType] = None
    created_at: datetime

    surfaces: Tuple[SurfacePlane, ...]
    breakdown: Tuple[SurfaceBreakdown, ...] = ()

    # Aggregate measurements
    total_area: float = Field(ge=0, description="Sum of projected areas in square meters")
    total_surface_area: float = Field(ge=0, description="Sum of planar areas in square meters")
    total_area_sqft: float = Field(ge=0)
    roofing_squares: float = Field(ge=0, description="Roofing squares (sqft/100)")

    # Pitch information
    dominant_pitch_degrees: float = Field(ge=0, le=90)
    dominant_pitch_12: float = Field(ge=0)

    # Quality
    quality_score: float = Field(ge=0, le=1)
    confidence_level: ConfidenceLevel
    errors: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()
    recommendations: Tuple[str, ...] = ()
    is_valid: bool = True


class CostEstimate(BaseModel):
    material_cost: float = Field(ge=0)
    labor_cost: float = Field(ge=0)
    total_cost: float = Field(ge=0)
    currency: str = "USD"


class MaterialEstimate(BaseModel):
    """Material requirements for quoting"""
    base_area: float = Field(ge=0)
    adjusted_area: float = Field(ge=0)
    waste_percent: float = Field(ge=0)
    dominant_material: RoofMaterial
    shingle_bundles: Optional[int] = None
    metal_sheets: Optional[int] = None
    tiles: Optional[int] = None
    cost: CostEstimate


# Dataclasses for internal processing

@dataclass
class PlaneFilterConfig:
    """Acceptance thresholds for detected plane candidates"""
    min_plane_area: float = 1.0  # square meters
    min_confidence: float = 0.7
    max_distance: float = 50.0  # meters
    merge_threshold: float = 0.5  # meters, advisory for merge suggestions


@dataclass
class PlaneMetrics:
    """Inputs handed to classification strategies"""
    area: float
    pitch_angle: float
    azimuth_angle: float
    confidence: float
    current_material: RoofMaterial = RoofMaterial.UNKNOWN


@dataclass
class AggregationConfig:
    """Validation thresholds for finalizing a measurement"""
    min_surface_confidence: float = 0.5
    quality_warning_threshold: float = 0.7
    small_surface_area: float = 0.5
    large_surface_area: float = 2000.0
    min_boundary_points: int = 4
    steep_pitch_degrees: float = 60.0
    flat_pitch_degrees: float = 2.0
    max_projection_discrepancy: float = 0.5


@dataclass
class ValidationReport:
    """Outcome of the pre-finalize validation rules"""
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    quality_score: float = 0.0

    @property
    def is_valid(self) -> bool:
        return not self.errors
