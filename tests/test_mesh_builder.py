"""Tests for surface extrusion and geometry export."""

import json
import math

import pytest
from structlog.testing import capture_logs

from conftest import make_surface
from models.errors import InvalidGeometryError, UnsupportedFormatError
from models.measurement import (
    ExportFormat,
    Face3D,
    Geometry3D,
    LevelOfDetail,
    Model3D,
    RoofMaterial,
)
from services.mesh_builder import DEFAULT_MATERIALS, validate_mesh


def _polygon(n: int):
    # Regular-ish convex boundary with n points in the x/z plane
    return [
        (10 * math.cos(2 * math.pi * i / n), 0.0, 10 * math.sin(2 * math.pi * i / n))
        for i in range(n)
    ]


class TestBuildGeometry:
    @pytest.mark.parametrize("n", [3, 4, 5, 8, 17])
    def test_vertex_and_face_counts(self, builder, n):
        plane = make_surface(boundary=_polygon(n), area=50.0)
        geometry = builder.build_geometry(plane)

        assert len(geometry.vertices) == 2 * n
        assert len(geometry.faces) == n + 2
        assert builder.validate(geometry)
        assert geometry.metadata.is_valid

    def test_face_layout(self, builder):
        plane = make_surface(boundary=[(0, 0, 0), (1, 0, 0), (1, 0, 1), (0, 0, 1)])
        geometry = builder.build_geometry(plane, extrusion_height=0.2)

        top, bottom, *sides = geometry.faces
        assert top.vertices == [4, 5, 6, 7]
        assert bottom.vertices == [3, 2, 1, 0]
        assert sides[0].vertices == [0, 1, 5, 4]
        assert sides[-1].vertices == [3, 0, 4, 7]

    def test_rings_and_bounding_box(self, builder):
        plane = make_surface(boundary=[(0, 0, 0), (4, 0, 0), (4, 0, 3)])
        geometry = builder.build_geometry(plane, extrusion_height=0.25)

        assert {v.y for v in geometry.vertices[:3]} == {0.0}
        assert {v.y for v in geometry.vertices[3:]} == {0.25}
        box = geometry.bounding_box
        assert (box.min.x, box.min.y, box.min.z) == (0.0, 0.0, 0.0)
        assert (box.max.x, box.max.y, box.max.z) == (4.0, 0.25, 3.0)

    def test_material_from_plane(self, builder):
        plane = make_surface(material=RoofMaterial.METAL)
        geometry = builder.build_geometry(plane)
        assert geometry.materials == [DEFAULT_MATERIALS[RoofMaterial.METAL]]
        assert geometry.plane_id == plane.id

    def test_cache_hit_returns_equal_geometry(self, builder):
        plane = make_surface()
        first = builder.build_geometry(plane)

        with capture_logs() as logs:
            second = builder.build_geometry(plane)

        assert second == first
        assert [entry["event"] for entry in logs] == ["geometry_cache_hit"]

    def test_cache_key_includes_height_and_lod(self, builder):
        plane = make_surface()
        builder.build_geometry(plane)

        with capture_logs() as logs:
            thicker = builder.build_geometry(plane, extrusion_height=0.5)
            detailed = builder.build_geometry(plane, lod=LevelOfDetail.HIGH)

        assert [entry["event"] for entry in logs] == ["geometry_built", "geometry_built"]
        assert {v.y for v in thicker.vertices[4:]} == {0.5}
        assert detailed.metadata.complexity == LevelOfDetail.HIGH

    def test_edited_plane_is_rebuilt(self, builder):
        plane = make_surface(boundary=[(0, 0), (1, 0), (1, 1)])
        first = builder.build_geometry(plane)

        edited = plane.model_copy(update={"boundary": make_surface(boundary=_polygon(5)).boundary})
        second = builder.build_geometry(edited)

        assert second != first
        assert len(second.vertices) == 10

        with capture_logs() as logs:
            assert builder.build_geometry(edited) == second
        assert [entry["event"] for entry in logs] == ["geometry_cache_hit"]

    def test_clear_cache(self, builder):
        plane = make_surface()
        builder.build_geometry(plane)
        builder.clear_cache()

        with capture_logs() as logs:
            builder.build_geometry(plane)
        assert [entry["event"] for entry in logs] == ["geometry_built"]

    def test_caller_edits_do_not_reach_cache(self, builder):
        plane = make_surface()
        geometry = builder.build_geometry(plane)
        face_count = len(geometry.faces)

        geometry.faces.clear()
        geometry.vertices[0].x = 99.0

        rebuilt = builder.build_geometry(plane)
        assert len(rebuilt.faces) == face_count
        assert rebuilt.vertices[0].x == 0.0
        assert builder.validate(rebuilt)


class TestBuildModel:
    def test_totals(self, builder):
        planes = [
            make_surface("a"),
            make_surface("b", boundary=[(0, 0), (4, 0), (0, 3)]),
        ]
        model = builder.build_model(planes, name="Test Roof")

        assert model.name == "Test Roof"
        assert model.total_geometries == 2
        assert model.total_vertices == 8 + 6
        assert model.total_faces == 6 + 5
        assert model.transform.scale.x == 1.0
        assert model.transform.position.y == 0.0

    def test_geometries_are_owned_by_model(self, builder):
        plane = make_surface()
        cached = builder.build_geometry(plane)

        first = builder.build_model([plane])
        second = builder.build_model([plane])

        assert first.geometries[0] == cached
        assert first.geometries[0] is not cached
        assert first.geometries[0] is not second.geometries[0]

    def test_without_auto_materials(self, builder):
        model = builder.build_model([make_surface(material=RoofMaterial.TILE)], auto_materials=False)
        assert model.geometries[0].materials[0].type == RoofMaterial.UNKNOWN


class TestValidate:
    def test_out_of_range_index(self, builder):
        geometry = builder.build_geometry(make_surface())
        broken = geometry.model_copy(
            update={"faces": geometry.faces + [Face3D(vertices=[0, 1, 99])]}
        )
        assert not builder.validate(broken)

    def test_needs_faces_and_vertices(self):
        assert not validate_mesh([], [])


class TestExport:
    @pytest.fixture()
    def geometry(self, builder):
        return builder.build_geometry(make_surface(boundary=[(0, 0, 0), (4, 0, 0), (4, 0, 3)]))

    def test_json_is_deterministic(self, builder, geometry):
        first = builder.export(geometry, "json")
        second = builder.export(geometry, ExportFormat.JSON)
        assert first == second
        assert json.loads(first)["id"] == geometry.id

    def test_json_round_trip(self, builder, geometry):
        restored = builder.import_data(builder.export(geometry, "json"), "json")
        assert isinstance(restored, Geometry3D)
        assert restored.model_dump() == geometry.model_dump()

    def test_model_json_round_trip(self, builder):
        model = builder.build_model([make_surface("a"), make_surface("b")])
        restored = builder.import_data(builder.export(model, "json"), "json")
        assert isinstance(restored, Model3D)
        assert restored.model_dump() == model.model_dump()

    def test_obj_is_one_based(self, builder, geometry):
        text = builder.export(geometry, "obj")
        vertex_lines = [line for line in text.splitlines() if line.startswith("v ")]
        face_lines = [line for line in text.splitlines() if line.startswith("f ")]

        assert len(vertex_lines) == 6
        assert face_lines[0] == "f 4 5 6"
        assert face_lines[1] == "f 3 2 1"

    def test_model_obj_offsets_groups(self, builder):
        model = builder.build_model([
            make_surface("a", boundary=[(0, 0), (1, 0), (0, 1)]),
            make_surface("b", boundary=[(0, 0), (1, 0), (0, 1)]),
        ])
        lines = builder.export(model, "obj").splitlines()
        face_lines = [line for line in lines if line.startswith("f ")]

        assert sum(1 for line in lines if line.startswith("g ")) == 2
        assert face_lines[0] == "f 4 5 6"
        # second geometry starts after the first one's 6 vertices
        assert face_lines[5] == "f 10 11 12"

    def test_ply_header_and_faces(self, builder, geometry):
        lines = builder.export(geometry, "ply").splitlines()

        assert lines[0] == "ply"
        assert "element vertex 6" in lines
        assert "element face 5" in lines
        body = lines[lines.index("end_header") + 1:]
        assert len(body) == 6 + 5
        assert body[6] == "3 3 4 5"
        # PLY indices start at 0, unlike OBJ
        assert body[7] == "3 2 1 0"
        indices = [int(i) for line in body[6:] for i in line.split()[1:]]
        assert min(indices) == 0
        assert max(indices) == 5

    def test_unsupported_format(self, builder, geometry):
        with pytest.raises(UnsupportedFormatError) as exc_info:
            builder.export(geometry, "stl")
        assert exc_info.value.format == "stl"

    def test_invalid_geometry_not_exported(self, builder, geometry):
        broken = geometry.model_copy(update={"faces": [Face3D(vertices=[0, 1, 42])]})
        with pytest.raises(InvalidGeometryError):
            builder.export(broken, "obj")

    @pytest.mark.parametrize("fmt", ["obj", "ply", "gltf"])
    def test_import_only_json(self, builder, fmt):
        with pytest.raises(UnsupportedFormatError) as exc_info:
            builder.import_data("anything", fmt)
        assert exc_info.value.operation == "import"
