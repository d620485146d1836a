"""
Material Estimator

Turns a finalized measurement into material quantities and a rough
cost for quoting. Pricing is placeholder USD per square foot until a
price list is supplied.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import structlog

from models.measurement import (
    CostEstimate,
    MaterialEstimate,
    MeasurementDocument,
    RoofMaterial,
    SurfacePlane,
)
from services.measurement_aggregator import SQFT_PER_M2

logger = structlog.get_logger()

SQFT_PER_SHINGLE_BUNDLE = 33.3
SQFT_PER_METAL_SHEET = 36.0
TILES_PER_SQFT = 1.0

MAX_COMPLEXITY_FACTOR = 1.5

MATERIAL_PRICES: Dict[RoofMaterial, float] = {
    RoofMaterial.SHINGLE: 3.50,
    RoofMaterial.METAL: 8.00,
    RoofMaterial.TILE: 6.50,
    RoofMaterial.FLAT: 4.00,
    RoofMaterial.UNKNOWN: 4.00,
}

LABOR_PRICES: Dict[RoofMaterial, float] = {
    RoofMaterial.SHINGLE: 2.50,
    RoofMaterial.METAL: 4.00,
    RoofMaterial.TILE: 4.50,
    RoofMaterial.FLAT: 3.00,
    RoofMaterial.UNKNOWN: 3.00,
}


@dataclass
class EstimateConfig:
    waste_factor_percent: float = 10.0
    material_prices: Dict[RoofMaterial, float] = field(default_factory=lambda: dict(MATERIAL_PRICES))
    labor_prices: Dict[RoofMaterial, float] = field(default_factory=lambda: dict(LABOR_PRICES))
    currency: str = "USD"


def calculate_complexity_factor(surfaces: List[SurfacePlane]) -> float:
    """
    Extra waste multiplier for complicated roofs.

    More surfaces, steep pitches, small cut-up surfaces and many
    orientations all add waste. Capped at 1.5.
    """
    if not surfaces:
        return 1.0

    factor = 1.0

    if len(surfaces) > 4:
        factor += (len(surfaces) - 4) * 0.05

    avg_pitch = sum(s.pitch_angle for s in surfaces) / len(surfaces)
    if avg_pitch > 30:
        factor += (avg_pitch - 30) * 0.002

    small = sum(1 for s in surfaces if s.area < 10)
    factor += small * 0.03

    # Orientations bucketed to 45 degree sectors
    orientations = {round(s.azimuth_angle / 45) * 45 for s in surfaces}
    if len(orientations) > 2:
        factor += (len(orientations) - 2) * 0.02

    return min(factor, MAX_COMPLEXITY_FACTOR)


def dominant_material(surfaces: List[SurfacePlane]) -> RoofMaterial:
    """Material covering the largest area."""
    areas: Dict[RoofMaterial, float] = {}
    for surface in surfaces:
        areas[surface.material] = areas.get(surface.material, 0.0) + surface.area

    if not areas:
        return RoofMaterial.UNKNOWN
    return max(areas.items(), key=lambda item: item[1])[0]


def estimate_materials(
    document: MeasurementDocument,
    config: Optional[EstimateConfig] = None
) -> MaterialEstimate:
    """
    Estimate materials and cost for a measurement.

    Args:
        document: Finalized measurement
        config: Waste factor and pricing

    Returns:
        MaterialEstimate
    """
    config = config or EstimateConfig()

    base_area = document.total_area
    complexity = calculate_complexity_factor(document.surfaces)
    adjusted_area = base_area * (1 + config.waste_factor_percent / 100) * complexity
    adjusted_sqft = adjusted_area * SQFT_PER_M2

    material = dominant_material(document.surfaces)

    bundles = sheets = tiles = None
    if material == RoofMaterial.SHINGLE:
        bundles = math.ceil(adjusted_sqft / SQFT_PER_SHINGLE_BUNDLE)
    elif material == RoofMaterial.METAL:
        sheets = math.ceil(adjusted_sqft / SQFT_PER_METAL_SHEET)
    elif material == RoofMaterial.TILE:
        tiles = math.ceil(adjusted_sqft * TILES_PER_SQFT)

    material_cost = adjusted_sqft * config.material_prices.get(material, MATERIAL_PRICES[RoofMaterial.UNKNOWN])
    labor_cost = adjusted_sqft * config.labor_prices.get(material, LABOR_PRICES[RoofMaterial.UNKNOWN])

    estimate = MaterialEstimate(
        base_area=round(base_area, 2),
        adjusted_area=round(adjusted_area, 2),
        waste_percent=round(config.waste_factor_percent + (complexity - 1) * 100, 2),
        dominant_material=material,
        shingle_bundles=bundles,
        metal_sheets=sheets,
        tiles=tiles,
        cost=CostEstimate(
            material_cost=round(material_cost, 2),
            labor_cost=round(labor_cost, 2),
            total_cost=round(material_cost + labor_cost, 2),
            currency=config.currency,
        ),
    )

    logger.info(
        "materials_estimated",
        document_id=document.id,
        material=material.value,
        adjusted_area=estimate.adjusted_area,
        total_cost=estimate.cost.total_cost,
    )

    return estimate
