import logging

import pyclipper
import pytest

from nfp_cache import NfpCache, NfpKey
from part_tree import BIN_ID
from placement_worker import Fitness, Placement, PlacementWorker
from conftest import fill_cache, make_part, rect, square

CONFIG = {'clipperScale': 10000000}


def keys_for(parts, rotations):
    keys = [NfpKey(BIN_ID, part.id, True, 0, rot) for part, rot in zip(parts, rotations)]
    for i, (a, ra) in enumerate(zip(parts, rotations)):
        for b, rb in zip(parts[i + 1:], rotations[i + 1:]):
            keys.append(NfpKey(a.id, b.id, False, ra, rb))
    return keys


def place(bin_polygon, parts, rotations=None):
    rotations = rotations or [0] * len(parts)
    cache = fill_cache(bin_polygon, parts, keys_for(parts, rotations))
    worker = PlacementWorker(bin_polygon, CONFIG, cache)
    return worker.place_paths(parts, rotations)


def test_single_part_goes_to_origin():
    result = place(rect(100, 50), [make_part(0, square(10))])

    assert result.placements == [[Placement(0, 0.0, 0.0, 0)]]
    assert result.unplaced == []
    assert result.packed_ratio == pytest.approx(0.02)
    assert result.fitness.unplaced == 0
    assert result.fitness.sheets == 1


def test_exact_fit_places_parts_side_by_side():
    parts = [make_part(0, square(10)), make_part(1, square(10))]
    result = place(rect(20, 10), parts)

    assert len(result.placements) == 1
    first, second = result.placements[0]
    assert (first.x, first.y) == (0.0, 0.0)
    assert second.x == pytest.approx(10)
    assert second.y == pytest.approx(0)
    assert result.packed_ratio == pytest.approx(1.0)


def test_oversize_part_is_unplaced():
    parts = [make_part(0, square(10)), make_part(1, square(60))]
    result = place(rect(100, 50), parts)

    assert result.unplaced == [1]
    assert result.placed_count == 1
    assert result.fitness.unplaced == 1


def test_parts_spill_onto_new_sheets():
    parts = [make_part(i, square(10)) for i in range(3)]
    result = place(square(10), parts)

    assert len(result.placements) == 3
    assert all(len(sheet) == 1 for sheet in result.placements)
    assert result.fitness.sheets == 3
    assert result.fitness.waste == pytest.approx(0)


def test_placed_parts_do_not_overlap():
    parts = [make_part(0, rect(30, 20)), make_part(1, rect(25, 10)), make_part(2, square(15))]
    result = place(rect(100, 50), parts)

    boxes = []
    for p in result.placements[0]:
        part = parts[p.id]
        xs = [q['x'] + p.x for q in part]
        ys = [q['y'] + p.y for q in part]
        boxes.append((min(xs), min(ys), max(xs), max(ys)))

    for i, a in enumerate(boxes):
        assert a[0] >= -1e-6 and a[1] >= -1e-6 and a[2] <= 100 + 1e-6 and a[3] <= 50 + 1e-6
        for b in boxes[i + 1:]:
            overlap_x = min(a[2], b[2]) - max(a[0], b[0])
            overlap_y = min(a[3], b[3]) - max(a[1], b[1])
            assert overlap_x <= 1e-6 or overlap_y <= 1e-6


def test_missing_nfp_skips_the_part():
    parts = [make_part(0, square(10)), make_part(1, square(10))]
    bin_keys = [NfpKey(BIN_ID, part.id, True, 0, 0) for part in parts]
    cache = fill_cache(rect(100, 50), parts, bin_keys)

    result = PlacementWorker(rect(100, 50), CONFIG, cache).place_paths(parts, [0, 0])

    # the second part never shares a sheet with the first
    assert [len(sheet) for sheet in result.placements] == [1, 1]


def test_fitness_orders_by_unplaced_then_sheets():
    assert Fitness(0, 3, 0.9, 1.0) < Fitness(1, 1, 0.0, 0.0)
    assert Fitness(0, 1, 0.9, 1.0) < Fitness(0, 2, 0.0, 0.0)
    assert Fitness(0, 1, 0.1, 1.0) < Fitness(0, 1, 0.2, 0.0)
    assert Fitness(1, 2, 0.5, 0.0).score == pytest.approx(4.5)


def test_failed_pocket_subtraction_keeps_outer_region(caplog):
    caplog.set_level(logging.DEBUG, logger='placement_worker')
    worker = PlacementWorker(square(100), CONFIG, NfpCache())
    degenerate = [{'x': 1, 'y': 1}, {'x': 2, 'y': 2}]

    paths = worker._region_paths([(square(10), [degenerate], [])])

    assert len(paths) == 1
    assert abs(pyclipper.Area(paths[0])) == pytest.approx(100 * CONFIG['clipperScale'] ** 2)
    assert any('孔内区域相减失败' in record.getMessage() for record in caplog.records)
