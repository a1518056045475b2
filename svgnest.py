# svgnest.py

import argparse
import logging
import os
import random
import sys
import threading
from typing import List, Dict, Optional, Callable

from lxml import etree
from tqdm import tqdm

from geometry_util import GeometryUtil
from genetic_algorithm import GeneticAlgorithm, Individual
from nfp_cache import NfpKey, NfpShape, NfpCache, NfpWorkerPool
from part_tree import BIN_ID, Polygon, PartTree
from placement_worker import PlacementWorker, PlacementResult
from svg_parser import SvgParser

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    'clipperScale': 10000000,
    'curveTolerance': 0.3,
    'spacing': 0,
    'rotations': 4,
    'populationSize': 10,
    'mutationRate': 10,
    'useHoles': False,
    'exploreConcave': False
}


def _validated(name, value):
    """返回合法的配置值, 不合法时抛出 ValueError"""
    if name in ('useHoles', 'exploreConcave'):
        if not isinstance(value, bool):
            raise ValueError(f'{name} must be a bool')
        return value

    if isinstance(value, bool):
        raise ValueError(f'{name} must be a number')

    if name == 'curveTolerance':
        value = float(value)
        if value <= 0:
            raise ValueError('curveTolerance must be > 0')
    elif name == 'spacing':
        value = float(value)
        if value < 0:
            raise ValueError('spacing must be >= 0')
    elif name == 'rotations':
        value = int(value)
        if value < 1:
            raise ValueError('rotations must be >= 1')
    elif name == 'populationSize':
        value = int(value)
        if value <= 2:
            raise ValueError('populationSize must be > 2')
    elif name == 'mutationRate':
        value = int(value)
        if not 0 <= value <= 100:
            raise ValueError('mutationRate must be within 0..100')
    elif name == 'clipperScale':
        value = int(value)
        if value <= 0:
            raise ValueError('clipperScale must be > 0')
    else:
        raise ValueError(f'unknown option {name}')

    return value


class SvgNest:
    def __init__(self, max_workers: Optional[int] = None, use_processes: bool = True,
                 interval: float = 0.1, rng: Optional[random.Random] = None):
        """
        初始化SvgNest
        max_workers: NFP计算的并行数, 默认为CPU核数
        use_processes: True 使用进程池, False 使用线程池
        interval: 后台线程两次迭代之间的间隔(秒)
        rng: 遗传算法使用的随机数生成器
        """
        self.svg = None
        self.style = None
        self.parser = SvgParser()
        self.parts = None
        self.tree = None
        self.bin = None
        self.bin_source = None
        self.bin_polygon = None
        self.bin_bounds = None
        self.nfp_cache = NfpCache()
        self.pool = NfpWorkerPool(max_workers, use_processes)

        # 配置参数
        self._config = dict(DEFAULT_CONFIG)

        self.interval = interval
        self.rng = rng
        self.working = False
        self.GA = None
        self.best = None
        self.progress = 0

        self._shapes = None
        self._thread = None
        self._stop_event = threading.Event()
        self.progress_callback = None
        self.display_callback = None

    @property
    def config(self):
        """配置属性的getter"""
        return self._config

    # ===== 输入 =====

    def parse_svg(self, svg_string: str):
        """解析SVG字符串, 返回清理后的svg根元素"""
        self.stop()

        self.bin = None
        self.bin_source = None
        self.parts = None
        self._reset()

        self.parser = SvgParser()
        self.parser.config({'tolerance': self._config['curveTolerance']})

        self.parser.load(svg_string)
        self.style = self.parser.get_style()
        self.svg = self.parser.clean()

        logger.info(f"parse_svg: 清理后共有 {len(self.svg)} 个元素")
        return self.svg

    def set_bin(self, element):
        """设置容器元素"""
        if self.svg is None:
            return
        self.stop()
        self.bin = element
        self._reset()

    def set_parts(self, polygons: List[List[Dict]]):
        """直接以点列表输入零件 (不使用SVG)"""
        self.stop()
        self.svg = None
        self.style = None
        self.bin = None
        self.parts = [Polygon(points, source=i) for i, points in enumerate(polygons)]
        self._reset()

    def set_bin_polygon(self, points: List[Dict]):
        """直接以点列表输入容器"""
        self.stop()
        self.bin_source = Polygon(points, id=BIN_ID)
        self._reset()

    def _reset(self):
        """输入或配置变化后, 已有的NFP, 最优结果和种群都不再有效"""
        self.best = None
        self.nfp_cache.clear()
        self.bin_polygon = None
        self.tree = None
        self.GA = None

    def set_config(self, c: Optional[Dict] = None):
        """
        配置参数, 非法值被忽略
        任何修改都会清空NFP缓存, 最优结果和遗传算法状态
        """
        if c is None:
            return self._config

        self.stop()

        for name, value in c.items():
            try:
                self._config[name] = _validated(name, value)
            except (TypeError, ValueError) as e:
                logger.warning(f"set_config: 忽略配置 {name}={value!r}: {e}")

        self.parser.config({'tolerance': self._config['curveTolerance']})
        self._reset()

        return self._config

    def get_parts(self, elements) -> List[Polygon]:
        """将SVG元素转换为清理过的多边形"""
        polygons = []
        tolerance = self._config['curveTolerance']

        for element in elements:
            points = self.parser.polygonify(element)
            cleaned = GeometryUtil.clean_polygon(points, tolerance, self._config['clipperScale'])

            if cleaned and abs(GeometryUtil.polygon_area(cleaned)) > tolerance * tolerance:
                polygons.append(Polygon(cleaned, source=element))
            else:
                logger.warning(f"get_parts: 元素 {element.get('id') or element.tag} 无法转换为有效多边形, 跳过")

        return polygons

    # ===== 准备 =====

    def _prepare(self) -> bool:
        """建立零件树并准备容器多边形, 失败返回False"""
        tolerance = self._config['curveTolerance']
        scale = self._config['clipperScale']
        spacing = self._config['spacing']

        if self.svg is not None:
            if self.bin is None:
                return False
            elements = [child for child in self.svg if child is not self.bin
                        and isinstance(child.tag, str) and etree.QName(child).localname != 'style']
            parts = self.get_parts(elements)
            bin_points = self.parser.polygonify(self.bin)
        else:
            if self.bin_source is None or not self.parts:
                return False
            parts = []
            for part in self.parts:
                cleaned = GeometryUtil.clean_polygon(part, tolerance, scale)
                if cleaned:
                    parts.append(Polygon(cleaned, source=part.source))
                else:
                    logger.warning(f"start: 零件 {part.source} 退化, 跳过")
            bin_points = self.bin_source

        self.tree = PartTree.build(parts, tolerance)
        if not self.tree.roots:
            logger.warning("start: 没有可放置的零件")
            return False

        self.tree.normalize()
        self.tree.offset(0.5 * spacing, tolerance, scale)

        bin_polygon = GeometryUtil.clean_polygon(bin_points, tolerance, scale)
        if not bin_polygon:
            logger.warning("start: 容器多边形无效")
            return False

        if spacing > 0:
            offset_bin = GeometryUtil.polygon_offset(bin_polygon, -0.5 * spacing, tolerance, scale)
            if len(offset_bin) != 1:
                logger.warning(f"start: 容器收缩后得到 {len(offset_bin)} 个环, 无法使用")
                return False
            bin_polygon = offset_bin[0]

        if len(bin_polygon) < 3:
            return False

        # 容器对齐到原点
        self.bin_bounds = GeometryUtil.get_polygon_bounds(bin_polygon)
        self.bin_polygon = Polygon(
            [{'x': p['x'] - self.bin_bounds['x'], 'y': p['y'] - self.bin_bounds['y']} for p in bin_polygon],
            id=BIN_ID, source=self.bin)
        self.bin_polygon.width = self.bin_bounds['width']
        self.bin_polygon.height = self.bin_bounds['height']
        GeometryUtil.normalize_orientation(self.bin_polygon)

        self._shapes = {BIN_ID: NfpShape(self.bin_polygon.points(), [])}
        for poly_id in self.tree.roots:
            self._shapes[poly_id] = NfpShape(self.tree[poly_id].points(),
                                             [child.points() for child in self.tree.children(poly_id)])

        logger.info(f"start: {len(self.tree.roots)} 个零件, 容器 "
                    f"{self.bin_bounds['width']:.3f} x {self.bin_bounds['height']:.3f}")
        return True

    # ===== 运行 =====

    def start(self, progress_callback: Optional[Callable] = None, display_callback: Optional[Callable] = None,
              background: bool = True) -> bool:
        """
        开始排样
        background=True 时在后台线程中循环迭代, 否则由调用方调用 tick()
        没有容器或零件时返回False
        """
        if (self.svg is None or self.bin is None) and (self.bin_source is None or not self.parts):
            return False

        self.stop()

        if self.tree is None or self.bin_polygon is None:
            if not self._prepare():
                self.tree = None
                self.bin_polygon = None
                return False

        self.progress_callback = progress_callback
        self.display_callback = display_callback
        self.working = True
        self._stop_event.clear()

        if background:
            self._thread = threading.Thread(target=self._run, name='svgnest', daemon=True)
            self._thread.start()

        return True

    def _run(self):
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(self.interval)

    def tick(self) -> bool:
        """
        执行一次迭代: 评估一个个体
        已停止, 或后台线程正在运行而调用方不是该线程时返回False
        """
        if not self.working:
            return False

        thread = self._thread
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            return False

        if self.GA is None:
            parts = sorted(self.tree.top_level(), key=lambda p: abs(GeometryUtil.polygon_area(p)), reverse=True)
            self.GA = GeneticAlgorithm(parts, self.bin_polygon, self._config, self.rng)

        individual = self.GA.next_unevaluated()
        if individual is None:
            self.GA.generation()
            individual = self.GA.next_unevaluated()

        if individual is not None:
            self.launch_workers(individual)

        return True

    def _set_progress(self, progress: float):
        self.progress = progress
        if self.progress_callback:
            self.progress_callback(progress)

    def launch_workers(self, individual: Individual) -> PlacementResult:
        """计算个体所需的NFP, 放置零件并更新最优结果"""
        order = individual.order
        rotations = individual.rotations

        keys = []
        for i, part_id in enumerate(order):
            keys.append(NfpKey(BIN_ID, part_id, True, 0, rotations[i]))
            for j in range(i):
                keys.append(NfpKey(order[j], part_id, False, rotations[j], rotations[i]))

        self._set_progress(0)
        computed = self.pool.resolve_batch(self.nfp_cache, keys, self._shapes, self._config,
                                           lambda done: self._set_progress(0.5 * done))
        logger.debug(f"launch_workers: 新计算 {computed} 个NFP, 缓存共 {len(self.nfp_cache)} 个")

        worker = PlacementWorker(self.bin_polygon, self._config, self.nfp_cache)
        result = worker.place_paths([self.tree[part_id] for part_id in order], rotations)
        individual.fitness = result.fitness
        self._set_progress(1.0)

        total = len(self.tree.roots)
        if self.best is None or result.fitness < self.best.fitness:
            self.best = result
            logger.info(f"launch_workers: 新的最优结果 {result.fitness.score:.4f}, "
                        f"{len(result.placements)} 个容器, 放置 {result.placed_count}/{total}")
            if self.display_callback:
                self.display_callback(self.render(result), result.packed_ratio, result.placed_count, total)
        elif self.display_callback:
            self.display_callback(None, result.packed_ratio, result.placed_count, total)

        return result

    def stop(self):
        """停止迭代, 等待正在进行的计算完成"""
        self.working = False
        self._stop_event.set()

        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()
        self._thread = None

        self.pool.close()

    # ===== 输出 =====

    def render(self, result: Optional[PlacementResult] = None):
        """SVG输入时返回每个容器的SVG字符串, 否则返回放置列表"""
        result = result or self.best
        if result is None:
            return None

        if self.svg is not None and self.bin is not None:
            return self.parser.apply_placement(result.placements, self.tree, self.bin, self.bin_bounds)
        return result.placements

    def placed_polygons(self, result: Optional[PlacementResult] = None) -> List[List[List[Dict]]]:
        """返回每个容器中零件变换后的轮廓"""
        result = result or self.best
        if result is None:
            return []

        return [[GeometryUtil.transform_polygon(self.tree[p.id], p.x, p.y, p.rotation) for p in sheet]
                for sheet in result.placements]


def find_bin(svg, bin_id: Optional[str] = None):
    """按id查找容器元素, 未指定时取包围盒面积最大的元素"""
    parser = SvgParser()
    best = None
    best_area = 0
    for element in svg:
        if not isinstance(element.tag, str):
            continue
        if bin_id is not None:
            if element.get('id') == bin_id:
                return element
            continue
        points = parser.polygonify(element)
        if len(points) < 3:
            continue
        bounds = GeometryUtil.get_polygon_bounds(points)
        area = bounds['width'] * bounds['height']
        if area > best_area:
            best = element
            best_area = area
    return best


def main(argv=None):
    parser = argparse.ArgumentParser(description="Nest SVG parts into a container with a genetic algorithm")
    parser.add_argument("input", type=str, help="Input SVG file")
    parser.add_argument("--bin-id", type=str, default=None, help="id of the container element (default: largest element)")
    parser.add_argument("--spacing", type=float, default=DEFAULT_CONFIG['spacing'], help="Space between parts")
    parser.add_argument("--curve-tolerance", type=float, default=DEFAULT_CONFIG['curveTolerance'],
                        help="Maximum error when approximating curves")
    parser.add_argument("--rotations", type=int, default=DEFAULT_CONFIG['rotations'], help="Number of rotations to try")
    parser.add_argument("--population-size", type=int, default=DEFAULT_CONFIG['populationSize'],
                        help="Genetic algorithm population size")
    parser.add_argument("--mutation-rate", type=int, default=DEFAULT_CONFIG['mutationRate'],
                        help="Mutation rate in percent")
    parser.add_argument("--use-holes", action="store_true", help="Place parts inside the holes of other parts")
    parser.add_argument("--explore-concave", action="store_true", help="Search concave areas for NFPs")
    parser.add_argument("--iterations", type=int, default=50, help="Number of individuals to evaluate")
    parser.add_argument("--workers", type=int, default=None, help="Number of parallel NFP workers")
    parser.add_argument("--threads", action="store_true", help="Use threads instead of processes for NFPs")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--output", type=str, default="./output", help="Directory for the resulting SVG files")
    parser.add_argument("--plot", action="store_true", help="Also save a PNG plot of the best result")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    with open(args.input, 'r', encoding='utf-8') as f:
        svg_string = f.read()

    nest = SvgNest(max_workers=args.workers, use_processes=not args.threads,
                   rng=random.Random(args.seed) if args.seed is not None else None)
    nest.set_config({
        'spacing': args.spacing,
        'curveTolerance': args.curve_tolerance,
        'rotations': args.rotations,
        'populationSize': args.population_size,
        'mutationRate': args.mutation_rate,
        'useHoles': args.use_holes,
        'exploreConcave': args.explore_concave
    })

    svg = nest.parse_svg(svg_string)
    bin_element = find_bin(svg, args.bin_id)
    if bin_element is None:
        logger.error(f"main: 找不到容器元素 {args.bin_id or ''}")
        return 1
    nest.set_bin(bin_element)

    state = {'sheets': None}

    def on_display(sheets, ratio, placed, total):
        if sheets is not None:
            state['sheets'] = sheets
            bar.set_postfix(sheets=len(sheets), placed=f"{placed}/{total}", ratio=f"{ratio:.3f}")

    bar = tqdm(total=args.iterations, desc="Nesting")
    try:
        if not nest.start(display_callback=on_display, background=False):
            logger.error("main: 没有容器或零件, 无法开始")
            return 1

        for _ in range(args.iterations):
            nest.tick()
            bar.update(1)
    finally:
        bar.close()
        nest.stop()

    if not state['sheets']:
        logger.error("main: 没有得到放置结果")
        return 1

    os.makedirs(args.output, exist_ok=True)
    for i, sheet in enumerate(state['sheets']):
        path = os.path.join(args.output, f"sheet_{i + 1}.svg")
        with open(path, 'w', encoding='utf-8') as f:
            f.write(sheet)
        logger.info(f"main: 已保存 {path}")

    if args.plot:
        from visualize import plot_result
        plot_path = os.path.join(args.output, "result.png")
        plot_result(nest.bin_polygon, nest.placed_polygons(), plot_path)
        logger.info(f"main: 已保存 {plot_path}")

    return 0


if __name__ == '__main__':
    sys.exit(main())
