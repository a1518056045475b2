import random

import pytest

from nfp_cache import NfpCache, NfpWorkerPool, NfpShape
from part_tree import Polygon, BIN_ID


def rect(width, height, x=0.0, y=0.0):
    return [
        {'x': x, 'y': y},
        {'x': x + width, 'y': y},
        {'x': x + width, 'y': y + height},
        {'x': x, 'y': y + height}
    ]


def square(size, x=0.0, y=0.0):
    return rect(size, size, x, y)


def make_part(part_id, points):
    poly = Polygon(points, id=part_id)
    return poly


def fill_cache(bin_polygon, parts, keys, config=None):
    """Resolve keys synchronously with a thread pool and return the cache"""
    config = config or {'clipperScale': 10000000, 'exploreConcave': False, 'useHoles': False}
    shapes = {BIN_ID: NfpShape(list(bin_polygon), [])}
    for part in parts:
        shapes[part.id] = NfpShape(part.points(), [])

    cache = NfpCache()
    with NfpWorkerPool(max_workers=2, use_processes=False) as pool:
        pool.resolve_batch(cache, keys, shapes, config)
    return cache


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def config():
    return {
        'clipperScale': 10000000,
        'curveTolerance': 0.3,
        'spacing': 0,
        'rotations': 4,
        'populationSize': 10,
        'mutationRate': 10,
        'useHoles': False,
        'exploreConcave': False
    }
