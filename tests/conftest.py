"""Shared test fixtures: a controllable clock and ready-made roof surfaces."""

from datetime import datetime, timedelta, timezone

import pytest

from models.measurement import (
    Point3D,
    RoofMaterial,
    SurfacePlane,
    SurfaceSource,
    SurfaceType,
)
from services.calibration import CalibrationEngine, InMemoryCalibrationStore
from services.measurement_aggregator import MeasurementAggregator
from services.mesh_builder import MeshBuilder
from services.plane_processor import PlaneProcessor
from services.polygon_math import (
    azimuth_angle_from_normal,
    pitch_angle_from_normal,
    polygon_area,
    polygon_perimeter,
    projected_area,
)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, hours: float) -> None:
        self.now += timedelta(hours=hours)


def make_surface(
    surface_id="s1",
    boundary=((0, 0), (10, 0), (10, 8), (0, 8)),
    normal=(0, 1, 0),
    confidence=0.9,
    area=None,
    surface_type=SurfaceType.PRIMARY,
    material=RoofMaterial.SHINGLE,
) -> SurfacePlane:
    """Build a consistent SurfacePlane without going through a processor."""
    points = [Point3D.model_validate(p) for p in boundary]
    normal_vector = Point3D.model_validate(normal)
    pitch = pitch_angle_from_normal(normal_vector)
    area = polygon_area(points) if area is None else area
    return SurfacePlane(
        id=surface_id,
        boundary=points,
        normal=normal_vector,
        pitch_angle=pitch,
        azimuth_angle=azimuth_angle_from_normal(normal_vector),
        area=area,
        projected_area=projected_area(area, pitch),
        perimeter=polygon_perimeter(points),
        surface_type=surface_type,
        material=material,
        confidence=confidence,
        source=SurfaceSource.MANUAL,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store() -> InMemoryCalibrationStore:
    return InMemoryCalibrationStore()


@pytest.fixture()
def engine(store, clock) -> CalibrationEngine:
    return CalibrationEngine(store=store, clock=clock)


@pytest.fixture()
def calibrated_engine(engine) -> CalibrationEngine:
    """Engine calibrated with a business card at 5000 px/m."""
    engine.calibrate("business_card", {"width": 444.5, "height": 254})
    return engine


@pytest.fixture()
def processor(calibrated_engine) -> PlaneProcessor:
    return PlaneProcessor(calibration=calibrated_engine)


@pytest.fixture()
def builder() -> MeshBuilder:
    return MeshBuilder()


@pytest.fixture()
def aggregator(clock) -> MeasurementAggregator:
    return MeasurementAggregator(clock=clock)


@pytest.fixture()
def gable_roof():
    """Two opposing 10 x 6 m faces of a 30 degree gable roof."""
    slope = 0.5  # sin(30)
    rise = 0.8660254037844386  # cos(30)
    north = make_surface(
        "north",
        boundary=((0, 0), (10, 0), (10, 6), (0, 6)),
        normal=(0, rise, slope),
        confidence=0.9,
        area=60.0,
    )
    south = make_surface(
        "south",
        boundary=((0, 6), (10, 6), (10, 12), (0, 12)),
        normal=(0, rise, -slope),
        confidence=0.8,
        area=60.0,
    )
    return [north, south]
