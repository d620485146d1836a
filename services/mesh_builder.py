"""
Mesh Builder

Converts validated roof surfaces into exportable 3D solids:
- Extrusion of a surface boundary into a closed prism
- Batch conversion of many surfaces into one model
- Geometry validation
- JSON / OBJ / PLY serialization
"""

import json
import uuid
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import structlog

from models.errors import InvalidGeometryError, UnsupportedFormatError
from models.measurement import (
    BoundingBox,
    ExportFormat,
    Face3D,
    Geometry3D,
    GeometryMetadata,
    LevelOfDetail,
    Material3D,
    Model3D,
    ModelTransform,
    RoofMaterial,
    SurfacePlane,
    Vertex3D,
)

logger = structlog.get_logger()

DEFAULT_EXTRUSION_HEIGHT = 0.1  # 10cm roof thickness
MODEL_VERSION = "1.0.0"
EXPORT_HEADER = "Generated by RoofMeasure"

DEFAULT_MATERIALS: Dict[RoofMaterial, Material3D] = {
    RoofMaterial.SHINGLE: Material3D(
        id="shingle_default", name="Asphalt Shingle", type=RoofMaterial.SHINGLE,
        color="#8B4513", opacity=1.0, roughness=0.8, metallic=0.0,
    ),
    RoofMaterial.TILE: Material3D(
        id="tile_default", name="Clay Tile", type=RoofMaterial.TILE,
        color="#D2691E", opacity=1.0, roughness=0.6, metallic=0.0,
    ),
    RoofMaterial.METAL: Material3D(
        id="metal_default", name="Metal Roofing", type=RoofMaterial.METAL,
        color="#708090", opacity=1.0, roughness=0.3, metallic=0.8,
    ),
    RoofMaterial.FLAT: Material3D(
        id="flat_default", name="Flat Membrane", type=RoofMaterial.FLAT,
        color="#696969", opacity=1.0, roughness=0.9, metallic=0.0,
    ),
    RoofMaterial.UNKNOWN: Material3D(
        id="unknown_default", name="Unknown Material", type=RoofMaterial.UNKNOWN,
        color="#A0A0A0", opacity=0.8, roughness=0.5, metallic=0.2,
    ),
}

CacheKey = Tuple[str, float, LevelOfDetail]


def material_for_plane(plane: SurfacePlane) -> Material3D:
    return DEFAULT_MATERIALS.get(plane.material, DEFAULT_MATERIALS[RoofMaterial.UNKNOWN])


def extrude_boundary(
    plane: SurfacePlane,
    extrusion_height: float
) -> Tuple[List[Vertex3D], List[Face3D]]:
    """
    Extrude a surface boundary into a closed prism.

    The bottom ring sits at y=0 and the top ring at y=extrusion_height,
    giving 2n vertices. Faces are the top cap in boundary order, the
    bottom cap reversed so both caps face outward, and n side quads.

    Args:
        plane: Surface whose boundary is extruded
        extrusion_height: Prism height in meters

    Returns:
        Tuple of (vertices, faces)
    """
    n = len(plane.boundary)

    bottom = [Vertex3D(x=p.x, y=0.0, z=p.z) for p in plane.boundary]
    top = [Vertex3D(x=p.x, y=extrusion_height, z=p.z) for p in plane.boundary]
    vertices = bottom + top

    faces = [
        Face3D(vertices=[i + n for i in range(n)], material_index=0),
        Face3D(vertices=list(reversed(range(n))), material_index=0),
    ]

    for i in range(n):
        j = (i + 1) % n
        faces.append(Face3D(vertices=[i, j, j + n, i + n], material_index=0))

    return vertices, faces


def calculate_bounding_box(vertices: List[Vertex3D]) -> BoundingBox:
    """Componentwise min/max over all vertices."""
    if not vertices:
        origin = Vertex3D(x=0, y=0, z=0)
        return BoundingBox(min=origin, max=origin.model_copy())

    coords = np.array([(v.x, v.y, v.z) for v in vertices], dtype=np.float64)
    lo = coords.min(axis=0)
    hi = coords.max(axis=0)

    return BoundingBox(
        min=Vertex3D(x=float(lo[0]), y=float(lo[1]), z=float(lo[2])),
        max=Vertex3D(x=float(hi[0]), y=float(hi[1]), z=float(hi[2])),
    )


def validate_mesh(vertices: List[Vertex3D], faces: List[Face3D]) -> bool:
    """Every face index must address an existing vertex."""
    if len(vertices) < 3:
        return False
    if len(faces) == 0:
        return False

    count = len(vertices)
    for face in faces:
        for index in face.vertices:
            if index < 0 or index >= count:
                return False

    return True


def _format_number(value: float) -> str:
    # repr keeps full double precision and is deterministic
    return repr(float(value))


def _vertex_line(vertex: Vertex3D) -> str:
    return " ".join(_format_number(c) for c in (vertex.x, vertex.y, vertex.z))


def geometry_to_obj(geometry: Geometry3D) -> str:
    """Wavefront OBJ text, 1-based face indices."""
    lines = [f"# {EXPORT_HEADER}", f"# Geometry: {geometry.name}", ""]

    for vertex in geometry.vertices:
        lines.append(f"v {_vertex_line(vertex)}")
    lines.append("")

    for face in geometry.faces:
        lines.append("f " + " ".join(str(i + 1) for i in face.vertices))

    return "\n".join(lines) + "\n"


def model_to_obj(model: Model3D) -> str:
    """Wavefront OBJ text with one group per geometry."""
    lines = [f"# {EXPORT_HEADER}", f"# Model: {model.name}", ""]
    vertex_offset = 0

    for index, geometry in enumerate(model.geometries):
        lines.append(f"# Geometry {index + 1}: {geometry.name}")
        lines.append("g " + "_".join(geometry.name.split()))
        lines.append("")

        for vertex in geometry.vertices:
            lines.append(f"v {_vertex_line(vertex)}")
        lines.append("")

        for face in geometry.faces:
            lines.append(
                "f " + " ".join(str(i + vertex_offset + 1) for i in face.vertices)
            )
        lines.append("")

        vertex_offset += len(geometry.vertices)

    return "\n".join(lines)


def _ply_document(vertices: List[Vertex3D], faces: List[List[int]]) -> str:
    header = [
        "ply",
        "format ascii 1.0",
        f"comment {EXPORT_HEADER}",
        f"element vertex {len(vertices)}",
        "property float x",
        "property float y",
        "property float z",
        f"element face {len(faces)}",
        "property list uchar int vertex_indices",
        "end_header",
    ]
    body = [_vertex_line(v) for v in vertices]
    body += [f"{len(face)} " + " ".join(str(i) for i in face) for face in faces]
    return "\n".join(header + body) + "\n"


def geometry_to_ply(geometry: Geometry3D) -> str:
    """ASCII PLY text; PLY face lists are 0-based."""
    return _ply_document(
        geometry.vertices, [face.vertices for face in geometry.faces]
    )


def model_to_ply(model: Model3D) -> str:
    """ASCII PLY text with all geometries flattened into one mesh."""
    vertices: List[Vertex3D] = []
    faces: List[List[int]] = []

    for geometry in model.geometries:
        offset = len(vertices)
        vertices.extend(geometry.vertices)
        faces.extend([i + offset for i in face.vertices] for face in geometry.faces)

    return _ply_document(vertices, faces)


class MeshBuilder:
    """
    Builds and serializes roof geometry for one session.

    Geometry is cached by (plane id, extrusion height, level of detail);
    a rebuild for the same key overwrites the entry. The cache keeps its
    own copy and every call returns a fresh one, so callers may edit the
    geometry they get back.
    """

    def __init__(self):
        self._cache: Dict[CacheKey, Tuple[SurfacePlane, Geometry3D]] = {}

    def clear_cache(self) -> None:
        self._cache.clear()

    def build_geometry(
        self,
        plane: SurfacePlane,
        extrusion_height: float = DEFAULT_EXTRUSION_HEIGHT,
        lod: LevelOfDetail = LevelOfDetail.MEDIUM,
        material: Optional[Material3D] = None,
        use_cache: bool = True,
    ) -> Geometry3D:
        """
        Convert a surface to an extruded 3D solid.

        Args:
            plane: Validated surface
            extrusion_height: Solid thickness in meters
            lod: Level of detail, part of the cache key
            material: Material override, plane material when omitted
            use_cache: Reuse a cached geometry for the same key

        Returns:
            Geometry3D with 2n vertices and n+2 faces
        """
        lod = LevelOfDetail(lod)
        key: CacheKey = (plane.id, float(extrusion_height), lod)

        if use_cache and material is None and key in self._cache:
            cached_plane, cached = self._cache[key]
            # An edited plane keeps its id, so the entry must match its content
            if cached_plane == plane:
                logger.debug("geometry_cache_hit", plane_id=plane.id)
                return cached.model_copy(deep=True)

        vertices, faces = extrude_boundary(plane, extrusion_height)

        geometry = Geometry3D(
            id=f"geometry_{plane.id}",
            name=f"{plane.surface_type.value} Geometry",
            plane_id=plane.id,
            vertices=vertices,
            faces=faces,
            materials=[material or material_for_plane(plane)],
            bounding_box=calculate_bounding_box(vertices),
            metadata=GeometryMetadata(
                source="ar_scan",
                complexity=lod,
                total_area=plane.area,
                is_valid=validate_mesh(vertices, faces),
            ),
        )

        if material is None:
            self._cache[key] = (plane, geometry.model_copy(deep=True))

        logger.debug(
            "geometry_built",
            plane_id=plane.id,
            vertices=len(vertices),
            faces=len(faces),
        )

        return geometry

    def build_model(
        self,
        planes: List[SurfacePlane],
        name: str = "Roof Model",
        extrusion_height: float = DEFAULT_EXTRUSION_HEIGHT,
        auto_materials: bool = True,
    ) -> Model3D:
        """
        Convert several surfaces into one model.

        Each geometry in the model is a private copy, so no geometry is
        shared between models or with the builder cache.

        Args:
            planes: Surfaces to convert
            name: Model name
            extrusion_height: Solid thickness in meters
            auto_materials: Use each plane's material, else the unknown material

        Returns:
            Model3D with identity transform
        """
        geometries = []
        for plane in planes:
            material = None if auto_materials else DEFAULT_MATERIALS[RoofMaterial.UNKNOWN]
            geometries.append(self.build_geometry(plane, extrusion_height, material=material))

        total_vertices = sum(len(g.vertices) for g in geometries)
        total_faces = sum(len(g.faces) for g in geometries)

        model = Model3D(
            id=f"model_{uuid.uuid4().hex[:12]}",
            name=name,
            description=f"3D model generated from {len(planes)} roof planes",
            geometries=geometries,
            transform=ModelTransform(),
            version=MODEL_VERSION,
            total_vertices=total_vertices,
            total_faces=total_faces,
            total_geometries=len(geometries),
        )

        logger.info(
            "model_built",
            model_id=model.id,
            geometries=len(geometries),
            vertices=total_vertices,
            faces=total_faces,
        )

        return model

    @staticmethod
    def validate(geometry: Geometry3D) -> bool:
        """True iff the geometry is safe to export."""
        return validate_mesh(geometry.vertices, geometry.faces)

    def export(
        self,
        target: Union[Geometry3D, Model3D],
        fmt: Union[str, ExportFormat],
    ) -> str:
        """
        Serialize a geometry or model.

        Args:
            target: Geometry3D or Model3D
            fmt: json, obj or ply

        Returns:
            Serialized text
        """
        try:
            fmt = ExportFormat(fmt)
        except ValueError:
            raise UnsupportedFormatError(fmt, "export") from None

        geometries = target.geometries if isinstance(target, Model3D) else [target]
        for geometry in geometries:
            if not self.validate(geometry):
                raise InvalidGeometryError(geometry.id)

        if fmt == ExportFormat.JSON:
            return target.model_dump_json(indent=2)

        if isinstance(target, Model3D):
            return model_to_obj(target) if fmt == ExportFormat.OBJ else model_to_ply(target)
        return geometry_to_obj(target) if fmt == ExportFormat.OBJ else geometry_to_ply(target)

    def import_data(
        self,
        data: Union[str, bytes],
        fmt: Union[str, ExportFormat],
    ) -> Union[Geometry3D, Model3D]:
        """
        Load a geometry or model previously exported as JSON.

        OBJ and PLY are write-only targets.
        """
        try:
            fmt = ExportFormat(fmt)
        except ValueError:
            raise UnsupportedFormatError(fmt, "import") from None

        if fmt != ExportFormat.JSON:
            raise UnsupportedFormatError(fmt.value, "import")

        payload = json.loads(data)
        if "geometries" in payload:
            return Model3D.model_validate(payload)
        return Geometry3D.model_validate(payload)
