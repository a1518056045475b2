import os
import random
import threading

import pytest

from geometry_util import GeometryUtil
from svg_parser import SVG_NS
from svgnest import DEFAULT_CONFIG, SvgNest, find_bin, main
from conftest import rect, square


class Recorder:
    def __init__(self):
        self.progress = []
        self.displays = []
        self.event = threading.Event()

    def on_progress(self, value):
        self.progress.append(value)

    def on_display(self, sheets, ratio, placed, total):
        self.displays.append((sheets, ratio, placed, total))
        self.event.set()

    @property
    def improvements(self):
        return [d for d in self.displays if d[0] is not None]


def make_nest(parts, bin_polygon, **config):
    nest = SvgNest(max_workers=2, use_processes=False, interval=0.01, rng=random.Random(42))
    nest.set_config(config)
    nest.set_parts(parts)
    nest.set_bin_polygon(bin_polygon)
    return nest


def run(nest, ticks, recorder=None):
    recorder = recorder or Recorder()
    assert nest.start(recorder.on_progress, recorder.on_display, background=False)
    try:
        for _ in range(ticks):
            assert nest.tick()
    finally:
        nest.stop()
    return recorder


def test_set_config_ignores_invalid_values():
    nest = SvgNest(use_processes=False)
    config = nest.set_config({'rotations': 0, 'spacing': -1, 'populationSize': 5,
                              'useHoles': 'yes', 'bogus': 1})

    assert config['rotations'] == DEFAULT_CONFIG['rotations']
    assert config['spacing'] == DEFAULT_CONFIG['spacing']
    assert config['useHoles'] is False
    assert config['populationSize'] == 5
    assert 'bogus' not in config
    assert nest.set_config(None) is config


def test_start_without_input_fails():
    nest = SvgNest(use_processes=False)
    assert not nest.start(background=False)

    nest.set_parts([square(10)])
    assert not nest.start(background=False)
    assert not nest.tick()


def test_start_fails_for_degenerate_container():
    nest = make_nest([square(10)], [{'x': 0, 'y': 0}, {'x': 10, 'y': 0}, {'x': 20, 'y': 0}])
    assert not nest.start(background=False)
    assert nest.tree is None


def test_single_square():
    nest = make_nest([square(10)], square(50), rotations=1)
    recorder = run(nest, 1)

    sheets, ratio, placed, total = recorder.displays[0]
    assert len(sheets) == 1
    assert ratio == pytest.approx(100 / 2500)
    assert (placed, total) == (1, 1)
    assert recorder.progress[0] == 0
    assert recorder.progress[-1] == 1.0

    (outline,), = nest.placed_polygons()
    bounds = GeometryUtil.get_polygon_bounds(outline)
    assert bounds['x'] >= -1e-6 and bounds['y'] >= -1e-6
    assert bounds['x'] + bounds['width'] <= 50 + 1e-6
    assert bounds['y'] + bounds['height'] <= 50 + 1e-6


def test_oversize_part_never_placed():
    nest = make_nest([square(60)], square(50))
    recorder = run(nest, 3)

    assert len(recorder.displays) == 3
    assert all(placed == 0 for _, _, placed, _ in recorder.displays)
    assert recorder.progress.count(1.0) == 3
    assert nest.best.unplaced == [0]


def test_exact_fit_two_squares():
    nest = make_nest([square(10), square(10, x=30)], rect(20, 10), rotations=1)
    run(nest, 5)

    assert nest.best.placed_count == 2
    assert len(nest.best.placements) == 1
    assert nest.best.packed_ratio == pytest.approx(1.0)


def test_spacing_change_clears_cache_and_best():
    nest = make_nest([square(10), square(10, x=30)], rect(20, 10), rotations=1)
    run(nest, 2)
    assert len(nest.nfp_cache) > 0
    assert nest.best.placed_count == 2

    nest.set_config({'spacing': 2})
    assert len(nest.nfp_cache) == 0
    assert nest.best is None
    assert nest.GA is None

    run(nest, 2)
    assert nest.best.placed_count == 0
    # container shrinks by half the spacing on every side
    assert nest.bin_polygon.width == pytest.approx(18, abs=1e-3)


def test_generation_advances_after_population_is_evaluated():
    nest = make_nest([square(10), rect(20, 5), square(7)], square(50), populationSize=3)
    run(nest, 5)

    assert nest.GA.generation_number >= 1
    assert nest.best.placed_count == 3


def test_background_thread():
    nest = make_nest([square(10)], square(50))
    recorder = Recorder()

    assert nest.start(recorder.on_progress, recorder.on_display)
    try:
        assert recorder.event.wait(timeout=30)
    finally:
        nest.stop()

    assert nest._thread is None
    assert not nest.working
    assert recorder.improvements


SVG = (f'<svg xmlns="{SVG_NS}" width="300" height="200">'
       '<rect id="bin" x="0" y="0" width="100" height="100"/>'
       '<g transform="translate(150 0)">'
       '<rect id="a" x="0" y="0" width="30" height="20"/>'
       '<polygon id="b" points="0,50 20,50 10,70"/>'
       '</g>'
       '<text>not a part</text>'
       '</svg>')


def test_svg_end_to_end():
    nest = SvgNest(max_workers=2, use_processes=False, rng=random.Random(1))
    nest.set_config({'rotations': 2})
    svg = nest.parse_svg(SVG)
    nest.set_bin(find_bin(svg, 'bin'))
    recorder = run(nest, 2)

    sheets, ratio, placed, total = recorder.improvements[0]
    assert (placed, total) == (2, 2)
    assert len(sheets) == 1
    assert 'class="bin"' in sheets[0]
    assert sheets[0].count('<g ') == 2


def test_find_bin_defaults_to_largest_element():
    nest = SvgNest(use_processes=False)
    svg = nest.parse_svg(SVG)
    assert find_bin(svg).get('id') == 'bin'
    assert find_bin(svg, 'a').get('id') == 'a'
    assert find_bin(svg, 'missing') is None


def test_cli_writes_sheets(tmp_path):
    source = tmp_path / 'input.svg'
    source.write_text(SVG, encoding='utf-8')
    out = tmp_path / 'out'

    code = main([str(source), '--bin-id', 'bin', '--threads', '--workers', '2', '--iterations', '3',
                 '--rotations', '1', '--seed', '5', '--output', str(out), '--plot'])

    assert code == 0
    assert os.path.exists(out / 'sheet_1.svg')
    assert os.path.exists(out / 'result.png')


def test_new_parts_discard_previous_run():
    nest = make_nest([square(10), square(8), square(6)], square(50))
    run(nest, 2)
    assert nest.GA is not None

    nest.set_parts([square(60)])
    assert nest.GA is None
    assert nest.best is None
    assert len(nest.nfp_cache) == 0

    run(nest, 2)
    assert nest.best.placed_count == 0
    assert nest.best.unplaced == [0]


def test_new_container_discards_previous_run():
    nest = make_nest([square(10)], square(100))
    run(nest, 1)
    assert nest.best.placed_count == 1

    nest.set_bin_polygon(square(5))
    assert nest.GA is None
    assert nest.best is None
    assert len(nest.nfp_cache) == 0

    run(nest, 2)
    assert nest.best.placed_count == 0
    assert nest.bin_polygon.width == pytest.approx(5)


def test_new_svg_container_discards_previous_run():
    nest = SvgNest(max_workers=2, use_processes=False, rng=random.Random(1))
    svg = nest.parse_svg(SVG)
    nest.set_bin(find_bin(svg, 'bin'))
    run(nest, 1)
    assert nest.best.placed_count == 2

    small = svg.makeelement(f'{{{SVG_NS}}}rect', {'id': 'small', 'width': '10', 'height': '10'})
    svg.append(small)
    nest.set_bin(small)
    assert nest.best is None
    assert len(nest.nfp_cache) == 0

    run(nest, 2)
    # the old container is now a part, and nothing fits a 10 x 10 sheet
    assert nest.best.placed_count == 0


def test_reparsed_svg_discards_previous_run():
    nest = SvgNest(max_workers=2, use_processes=False, rng=random.Random(1))
    svg = nest.parse_svg(SVG)
    nest.set_bin(find_bin(svg, 'bin'))
    run(nest, 1)

    svg = nest.parse_svg(f'<svg xmlns="{SVG_NS}"><rect id="bin" width="10" height="10"/>'
                         '<rect width="40" height="40"/></svg>')
    assert nest.GA is None
    assert nest.best is None
    assert len(nest.nfp_cache) == 0

    nest.set_bin(find_bin(svg, 'bin'))
    run(nest, 2)
    assert nest.best.placed_count == 0


def test_manual_tick_refused_while_background_thread_runs():
    nest = make_nest([square(10)], square(50))
    nest.interval = 0.5
    recorder = Recorder()

    assert nest.start(recorder.on_progress, recorder.on_display)
    try:
        assert recorder.event.wait(timeout=30)
        assert not nest.tick()
    finally:
        nest.stop()
