# placement_worker.py

import logging
from typing import List, Dict, Optional, NamedTuple

import numpy as np
import pyclipper

from geometry_util import GeometryUtil
from nfp_cache import NfpKey, NfpCache
from part_tree import BIN_ID

logger = logging.getLogger(__name__)


class Placement(NamedTuple):
    """零件先绕原点旋转 rotation 度, 再平移 (x, y)"""
    id: int
    x: float
    y: float
    rotation: float


class Fitness(NamedTuple):
    """
    适应度, 按字段顺序比较, 越小越好:
    未放置零件数, 使用的容器数, 最后一个容器的浪费率, 放置顺序惩罚
    """
    unplaced: int
    sheets: int
    waste: float
    order_penalty: float

    @property
    def score(self) -> float:
        """合成为单个数值, 仅用于显示"""
        return 2 * self.unplaced + self.sheets + self.waste + 0.001 * self.order_penalty


class PlacementResult:
    """一次完整放置的结果"""

    def __init__(self, placements: List[List[Placement]], unplaced: List[int], fitness: Fitness,
                 placed_area: float, bin_area: float):
        self.placements = placements
        self.unplaced = unplaced
        self.fitness = fitness
        self.placed_area = placed_area
        self.bin_area = bin_area

    @property
    def placed_count(self) -> int:
        return sum(len(sheet) for sheet in self.placements)

    @property
    def packed_ratio(self) -> float:
        if not self.placements or not self.bin_area:
            return 0.0
        return self.placed_area / (len(self.placements) * self.bin_area)

    def __repr__(self):
        return (f"PlacementResult(sheets={len(self.placements)}, placed={self.placed_count}, "
                f"unplaced={self.unplaced}, fitness={self.fitness.score:.4f})")


class _RotatedPart:
    __slots__ = ('id', 'rotation', 'polygon', 'bounds', 'area', 'position')

    def __init__(self, part, rotation, position):
        self.id = part.id
        self.rotation = rotation
        self.polygon = GeometryUtil.rotate_polygon(part, rotation)
        self.bounds = GeometryUtil.get_polygon_bounds(self.polygon)
        self.area = abs(GeometryUtil.polygon_area(part))
        self.position = position


def _shift(loop, dx, dy):
    return [{'x': p['x'] + dx, 'y': p['y'] + dy} for p in loop]


class PlacementWorker:
    def __init__(self, bin_polygon: List[Dict], config: Dict, nfp_cache: NfpCache):
        """
        bin_polygon: 已对齐到原点的容器多边形
        config: 配置参数 (使用 clipperScale)
        nfp_cache: 已包含所需NFP的缓存
        """
        self.bin_polygon = bin_polygon
        self.config = config
        self.nfp_cache = nfp_cache
        self.scale = config.get('clipperScale', 10000000)
        self.tolerance = 10.0 / self.scale
        self.bin_area = abs(GeometryUtil.polygon_area(bin_polygon))

    def place_paths(self, parts: List, rotations: List[float]) -> PlacementResult:
        """
        按给定顺序贪心放置零件
        当前容器放不下的零件留给下一个容器, 任何容器都放不下的零件记为未放置
        """
        remaining = [_RotatedPart(part, rotations[i], i) for i, part in enumerate(parts)]
        total_area = sum(r.area for r in remaining) or 1.0
        n = len(remaining)

        sheets = []
        sheet_parts = []
        placed_area = 0.0
        order_penalty = 0.0

        while remaining:
            placed = []
            placements = []

            for item in remaining:
                position = self._place_one(item, placed, placements)
                if position is None:
                    continue
                placed.append(item)
                placements.append(position)
                placed_area += item.area
                order_penalty += item.position * item.area

            if not placements:
                break

            sheets.append(placements)
            sheet_parts.append(placed)
            placed_ids = {item.id for item in placed}
            remaining = [item for item in remaining if item.id not in placed_ids]

        waste = 0.0
        if sheets and self.bin_area:
            bounds = self._sheet_bounds(sheet_parts[-1], sheets[-1])
            used = bounds['width'] * bounds['height']
            waste = max(used - sum(item.area for item in sheet_parts[-1]), 0.0) / self.bin_area

        fitness = Fitness(
            unplaced=len(remaining),
            sheets=len(sheets),
            waste=waste,
            order_penalty=order_penalty / (n * total_area) if n else 0.0,
        )

        if remaining:
            logger.debug(f"place_paths: {len(remaining)} 个零件无法放置: {[item.id for item in remaining]}")

        return PlacementResult(sheets, [item.id for item in remaining], fitness, placed_area, self.bin_area)

    def _place_one(self, item: _RotatedPart, placed: List[_RotatedPart],
                   placements: List[Placement]) -> Optional[Placement]:
        """在当前容器中为一个零件选择位置, 没有可行位置时返回None"""
        bin_nfp = self.nfp_cache.get(NfpKey(BIN_ID, item.id, True, 0, item.rotation))

        # 该角度下零件放不进容器
        if not bin_nfp:
            return None

        forbidden = []
        for other, position in zip(placed, placements):
            nfp = self.nfp_cache.get(NfpKey(other.id, item.id, False, other.rotation, item.rotation))
            if nfp is None:
                logger.warning(f"place_paths: 缺少NFP ({other.id}, {item.id}), 跳过零件 {item.id}")
                return None
            if not nfp:
                continue
            forbidden.append(self._forbidden_region(nfp, position))

        candidates = self._candidates(bin_nfp, forbidden)
        if not candidates:
            return None

        return self._best_candidate(item, candidates, placed, placements)

    def _forbidden_region(self, nfp: List[List[Dict]], position: Placement):
        """NFP平移到已放置零件的位置; 第一个环为禁区, 位于其内部的其余环为孔内可放置区域"""
        outer = _shift(nfp[0], position.x, position.y)
        pockets = []
        others = []
        for loop in nfp[1:]:
            shifted = _shift(loop, position.x, position.y)
            if GeometryUtil.point_in_polygon(shifted[0], outer, tolerance=self.tolerance) is not False:
                pockets.append(shifted)
            else:
                others.append(shifted)
        return outer, pockets, others

    def _region_paths(self, forbidden):
        """用clipper计算所有禁区的并集"""
        union = pyclipper.Pyclipper()
        has_path = False

        for outer, pockets, others in forbidden:
            region = [GeometryUtil.to_clipper_coordinates(outer, self.scale)]
            if pockets:
                pc = pyclipper.Pyclipper()
                try:
                    pc.AddPath(region[0], pyclipper.PT_SUBJECT, True)
                    pc.AddPaths([GeometryUtil.to_clipper_coordinates(p, self.scale) for p in pockets],
                                pyclipper.PT_CLIP, True)
                    region = pc.Execute(pyclipper.CT_DIFFERENCE, pyclipper.PFT_NONZERO, pyclipper.PFT_NONZERO)
                except pyclipper.ClipperException as e:
                    logger.debug(f"place_paths: 孔内区域相减失败, 只使用外环: {e}")
            region += [GeometryUtil.to_clipper_coordinates(o, self.scale) for o in others]

            for path in region:
                try:
                    union.AddPath(path, pyclipper.PT_SUBJECT, True)
                    has_path = True
                except pyclipper.ClipperException:
                    continue

        if not has_path:
            return []

        return union.Execute(pyclipper.CT_UNION, pyclipper.PFT_NONZERO, pyclipper.PFT_NONZERO)

    def _candidates(self, bin_nfp: List[List[Dict]], forbidden) -> List[Dict]:
        """
        候选参考点: 可行区域 (容器NFP减去禁区并集) 的顶点,
        以及落在容器NFP内或边上且不在任何禁区内部的NFP顶点 (面积为零的可行区域靠这一部分)
        """
        if not forbidden:
            return [p for loop in bin_nfp for p in loop]

        candidates = []

        try:
            combined = self._region_paths(forbidden)
            pc = pyclipper.Pyclipper()
            pc.AddPaths([GeometryUtil.to_clipper_coordinates(loop, self.scale) for loop in bin_nfp],
                        pyclipper.PT_SUBJECT, True)
            if combined:
                pc.AddPaths(combined, pyclipper.PT_CLIP, True)
                final = pc.Execute(pyclipper.CT_DIFFERENCE, pyclipper.PFT_NONZERO, pyclipper.PFT_NONZERO)
            else:
                final = pc.Execute(pyclipper.CT_UNION, pyclipper.PFT_NONZERO, pyclipper.PFT_NONZERO)
        except pyclipper.ClipperException as e:
            logger.debug(f"place_paths: clipper运算失败: {e}")
            final = []

        for path in final:
            if len(path) > 2:
                candidates.extend(GeometryUtil.to_nest_coordinates(path, self.scale))

        vertices = [p for loop in bin_nfp for p in loop]
        for outer, pockets, others in forbidden:
            vertices.extend(outer)
            for loop in pockets + others:
                vertices.extend(loop)

        for p in vertices:
            if self._is_feasible(p, bin_nfp, forbidden):
                candidates.append(p)

        return candidates

    def _is_feasible(self, p: Dict, bin_nfp, forbidden) -> bool:
        tol = self.tolerance
        if all(GeometryUtil.point_in_polygon(p, loop, tolerance=tol) is False for loop in bin_nfp):
            return False

        for outer, pockets, others in forbidden:
            if GeometryUtil.point_in_polygon(p, outer, tolerance=tol) is True:
                if not any(GeometryUtil.point_in_polygon(p, pocket, tolerance=tol) is not False
                           for pocket in pockets):
                    return False
            for loop in others:
                if GeometryUtil.point_in_polygon(p, loop, tolerance=tol) is True:
                    return False

        return True

    def _sheet_bounds(self, placed: List[_RotatedPart], placements: List[Placement]) -> Dict:
        xmin = min(item.bounds['x'] + pos.x for item, pos in zip(placed, placements))
        ymin = min(item.bounds['y'] + pos.y for item, pos in zip(placed, placements))
        xmax = max(item.bounds['x'] + item.bounds['width'] + pos.x for item, pos in zip(placed, placements))
        ymax = max(item.bounds['y'] + item.bounds['height'] + pos.y for item, pos in zip(placed, placements))
        return {'x': xmin, 'y': ymin, 'width': xmax - xmin, 'height': ymax - ymin}

    def _best_candidate(self, item: _RotatedPart, candidates: List[Dict], placed: List[_RotatedPart],
                        placements: List[Placement]) -> Placement:
        """
        选择使当前容器内零件包围盒 宽*2+高 最小的位置
        宽度权重更大, 让零件向一侧压紧; 相同时取x最小, 再取y最小
        """
        points = np.array([[c['x'], c['y']] for c in candidates], dtype=float)
        ref = item.polygon[0]
        shift_x = points[:, 0] - ref['x']
        shift_y = points[:, 1] - ref['y']

        left = shift_x + item.bounds['x']
        bottom = shift_y + item.bounds['y']
        right = left + item.bounds['width']
        top = bottom + item.bounds['height']

        if placed:
            sheet = self._sheet_bounds(placed, placements)
            left = np.minimum(left, sheet['x'])
            bottom = np.minimum(bottom, sheet['y'])
            right = np.maximum(right, sheet['x'] + sheet['width'])
            top = np.maximum(top, sheet['y'] + sheet['height'])

        metric = (right - left) * 2 + (top - bottom)
        best = metric.min()
        tied = np.flatnonzero(metric <= best + self.tolerance)
        order = np.lexsort((shift_y[tied], shift_x[tied]))
        index = tied[order[0]]

        return Placement(item.id, float(shift_x[index]), float(shift_y[index]), item.rotation)
