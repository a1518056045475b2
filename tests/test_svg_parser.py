import math

import pytest
from lxml import etree

from geometry_util import GeometryUtil
from matrix import Matrix
from part_tree import PartTree, Polygon
from placement_worker import Placement
from svg_parser import SvgParser, SVG_NS


def svg(body, extra=''):
    return f'<svg xmlns="{SVG_NS}" width="200" height="200" {extra}>{body}</svg>'


def elements(root):
    return [child for child in root if isinstance(child.tag, str)]


def bounds_of(parser, element):
    return GeometryUtil.get_polygon_bounds(parser.polygonify(element))


def test_load_rejects_bad_input():
    parser = SvgParser()
    with pytest.raises(ValueError):
        parser.load('')
    with pytest.raises(ValueError):
        parser.load('<html><body/></html>')
    with pytest.raises(etree.XMLSyntaxError):
        parser.load('<svg')


def test_get_style():
    parser = SvgParser()
    parser.load(svg('<style>.a { fill: red; }</style><rect width="1" height="1"/>'))
    assert etree.QName(parser.get_style()).localname == 'style'


def test_clean_applies_group_transforms_and_flattens():
    parser = SvgParser()
    parser.load(svg('<g transform="translate(10 20)"><rect x="0" y="0" width="5" height="5"/>'
                    '<g transform="scale(2)"><rect x="1" y="1" width="1" height="1"/></g></g>'
                    '<text>label</text>'))
    root = parser.clean()

    children = elements(root)
    assert [etree.QName(c).localname for c in children] == ['polygon', 'polygon']
    assert all(c.get('transform') is None for c in children)

    first = bounds_of(parser, children[0])
    assert (first['x'], first['y'], first['width']) == pytest.approx((10, 20, 5))
    second = bounds_of(parser, children[1])
    assert (second['x'], second['y'], second['width']) == pytest.approx((12, 22, 2))


def test_clean_transforms_path_data():
    parser = SvgParser()
    parser.load(svg('<path d="m0,0 l10,0 l0,10 z" transform="scale(2)"/>'))
    root = parser.clean()

    path = elements(root)[0]
    assert 'm' not in path.get('d')
    points = parser.polygonify(path)
    assert len(points) == 3
    assert bounds_of(parser, path)['width'] == pytest.approx(20)


def test_clean_splits_compound_paths():
    parser = SvgParser()
    parser.load(svg('<path id="p" d="M0,0 L10,0 L10,10 Z M20,20 L30,20 L30,30 Z"/>'))
    root = parser.clean()

    paths = elements(root)
    assert len(paths) == 2
    assert all(p.get('id') == 'p' for p in paths)
    assert bounds_of(parser, paths[1])['x'] == pytest.approx(20)


def test_polygonify_circle_within_tolerance():
    parser = SvgParser()
    parser.config({'tolerance': 0.3})
    parser.load(svg('<circle cx="50" cy="50" r="10"/>'))

    points = parser.polygonify(elements(parser.svg_root)[0])
    assert len(points) > 8
    for p in points:
        assert math.hypot(p['x'] - 50, p['y'] - 50) == pytest.approx(10)


def test_polygonify_linearizes_curves():
    parser = SvgParser()
    parser.config({'tolerance': 0.1})
    parser.load(svg('<path d="M0,0 C0,10 10,10 10,0 Z"/>'))

    points = parser.polygonify(elements(parser.svg_root)[0])
    assert len(points) > 4
    assert max(p['y'] for p in points) == pytest.approx(7.5, abs=0.1)


def test_polygonify_drops_duplicate_closing_point():
    parser = SvgParser()
    parser.load(svg('<polygon points="0,0 10,0 10,10 0,10 0,0"/>'))
    assert len(parser.polygonify(elements(parser.svg_root)[0])) == 4


def test_matrix_parse_and_rotate_about_center():
    m = Matrix.parse('translate(10,5) scale(2)')
    assert m.calc(1, 1) == pytest.approx((12, 7))
    assert m.calc(1, 1, is_relative=True) == pytest.approx((2, 2))

    r = Matrix.parse('rotate(90 10 10)')
    assert r.calc(20, 10) == pytest.approx((10, 20))
    assert r.is_similarity()
    assert not Matrix.parse('scale(2, 3)').is_similarity()
    assert Matrix.parse('').is_identity()


def test_apply_placement_round_trip():
    parser = SvgParser()
    parser.load(svg('<rect id="bin" x="5" y="5" width="100" height="80"/>'
                    '<polygon id="part" points="0,0 20,0 20,10 0,10"/>'))
    root = parser.clean()
    bin_element, part_element = elements(root)
    original = parser.polygonify(part_element)

    tree = PartTree.build([Polygon(original, source=part_element)])
    bin_bounds = bounds_of(parser, bin_element)
    placement = Placement(0, 30, 40, 90)

    (output,) = parser.apply_placement([[placement]], tree, bin_element, bin_bounds)

    reparsed = SvgParser()
    reparsed.load(output)
    out_root = reparsed.clean()
    bin_out = [e for e in elements(out_root) if e.get('class') == 'bin'][0]
    part_out = [e for e in elements(out_root) if e.get('class') != 'bin'][0]

    assert bounds_of(reparsed, bin_out)['x'] == pytest.approx(0)
    restored = GeometryUtil.untransform_polygon(reparsed.polygonify(part_out), 30, 40, 90)
    for p, q in zip(original, restored):
        assert q['x'] == pytest.approx(p['x'], abs=0.3)
        assert q['y'] == pytest.approx(p['y'], abs=0.3)


def test_apply_placement_tags_holes():
    parser = SvgParser()
    tree = PartTree.build([
        [{'x': 0, 'y': 0}, {'x': 30, 'y': 0}, {'x': 30, 'y': 30}, {'x': 0, 'y': 30}],
        [{'x': 10, 'y': 10}, {'x': 20, 'y': 10}, {'x': 20, 'y': 20}, {'x': 10, 'y': 20}],
    ])
    bin_bounds = {'x': 0, 'y': 0, 'width': 100, 'height': 100}

    (output,) = parser.apply_placement([[Placement(0, 5, 5, 0)]], tree, None, bin_bounds)

    root = etree.fromstring(output.encode('utf-8'))
    group = root.find(f'{{{SVG_NS}}}g')
    assert group.get('transform') == 'translate(5 5) rotate(0)'
    outlines = list(group)
    assert len(outlines) == 2
    assert outlines[0].get('class') is None
    assert outlines[1].get('class') == 'hole'
