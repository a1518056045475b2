import pytest

from geometry_util import GeometryUtil
from part_tree import PartTree, Polygon
from conftest import square


def nested_input():
    outer = square(100)
    island = square(10, x=45, y=45)
    hole = square(50, x=25, y=25)
    other = square(10, x=200)
    return [outer, island, hole, other]


def test_build_nests_by_first_vertex():
    tree = PartTree.build(nested_input())

    assert tree.roots == [0, 1]
    outer, other = tree.top_level()
    assert outer.source == 0
    assert other.source == 3

    hole = tree.children(outer.id)[0]
    assert hole.source == 2
    assert tree.parent(hole.id) is outer

    island = tree.children(hole.id)[0]
    assert island.source == 1
    assert tree.depth(island.id) == 2


def test_holes_alternate_with_depth():
    tree = PartTree.build(nested_input())
    by_source = {poly.source: poly.id for poly in tree.polygons.values()}

    assert not tree.is_hole(by_source[0])
    assert tree.is_hole(by_source[2])
    assert not tree.is_hole(by_source[1])
    assert not tree.is_hole(by_source[3])


def test_ids_are_unique_breadth_first_and_deterministic():
    first = PartTree.build(nested_input())
    second = PartTree.build(nested_input())

    assert sorted(first.polygons) == list(range(len(first)))
    assert {p.source: p.id for p in first.polygons.values()} == \
           {p.source: p.id for p in second.polygons.values()}

    # top level first, then the next level
    depths = [first.depth(i) for i in sorted(first.polygons)]
    assert depths == sorted(depths)


def test_contained_polygon_listed_before_its_container():
    # the innermost square comes first and must still end up two levels deep
    tree = PartTree.build([square(10, x=45, y=45), square(50, x=25, y=25), square(100)])

    assert len(tree.roots) == 1
    root = tree.top_level()[0]
    assert root.source == 2
    descendants = tree.descendants(root.id)
    assert [p.source for p in descendants] == [1, 0]
    assert tree.depth(descendants[-1].id) == 2


def test_degenerate_polygons_are_dropped():
    tiny = square(0.1, x=500)
    line = [{'x': 0, 'y': 0}, {'x': 5, 'y': 5}]
    tree = PartTree.build([square(10), tiny, line], tolerance=0.3)

    assert len(tree) == 1
    assert tree.top_level()[0].source == 0


def test_polygon_keeps_points_and_attributes():
    poly = Polygon(square(4), id=7, source='element')
    assert poly.points() == square(4)
    assert poly.children == []
    assert poly.parent is None
    assert poly.id == 7


def test_offset_grows_solids_and_shrinks_holes():
    tree = PartTree.build([square(100), square(50, x=25, y=25)])
    tree.normalize()
    tree.offset(1, 0.01, 10000000)

    outer = GeometryUtil.get_polygon_bounds(tree[0])
    hole = GeometryUtil.get_polygon_bounds(tree[1])
    assert outer['x'] == pytest.approx(-1, abs=1e-3)
    assert outer['width'] == pytest.approx(102, abs=1e-3)
    assert hole['x'] == pytest.approx(26, abs=1e-3)
    assert hole['width'] == pytest.approx(48, abs=1e-3)


def test_normalize_orients_every_polygon():
    tree = PartTree.build([list(reversed(square(100))), list(reversed(square(50, x=25, y=25)))])
    tree.normalize()

    for poly in tree.polygons.values():
        assert GeometryUtil.polygon_area(poly) <= 0
