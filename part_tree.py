# part_tree.py

import logging
from collections import deque
from typing import List, Dict, Optional, Iterable

from geometry_util import GeometryUtil

logger = logging.getLogger(__name__)

# 容器多边形的固定ID
BIN_ID = -1


class Polygon(list):
    """
    多边形: 点字典的列表, 附带树结构属性
    children 保存子多边形的ID列表, parent 只是父多边形的ID (不持有对象)
    """

    def __init__(self, points: Iterable[Dict] = (), id: Optional[int] = None, source=None):
        super().__init__({'x': float(p['x']), 'y': float(p['y'])} for p in points)
        self.id = id
        self.source = source
        self.children: List[int] = []
        self.parent: Optional[int] = None
        self.width: Optional[float] = None
        self.height: Optional[float] = None

    def points(self) -> List[Dict]:
        """返回可序列化的纯点列表"""
        return [{'x': p['x'], 'y': p['y']} for p in self]

    def __repr__(self):
        return f"Polygon(id={self.id}, points={len(self)}, children={self.children})"


class PartTree:
    """
    零件包含关系树
    所有多边形以ID为索引保存在 polygons 中, roots 为顶层零件的ID列表
    """

    def __init__(self):
        self.polygons: Dict[int, Polygon] = {}
        self.roots: List[int] = []

    @classmethod
    def build(cls, polygons: List[Polygon], tolerance: float = 0) -> 'PartTree':
        """
        根据点包含关系建立树并按广度优先分配ID
        面积小于 tolerance^2 的多边形被丢弃
        """
        tree = cls()

        candidates = []
        for i, poly in enumerate(polygons):
            if len(poly) < 3 or abs(GeometryUtil.polygon_area(poly)) <= tolerance * tolerance:
                logger.warning(f"build: 丢弃退化多边形 {i} (点数 {len(poly)})")
                continue
            if not isinstance(poly, Polygon):
                poly = Polygon(poly, source=i)
            poly.children = []
            poly.parent = None
            candidates.append(poly)

        next_id = 0
        # 多边形 -> 被其包含的多边形, 跨层保留
        nested = {id(poly): [] for poly in candidates}
        # 每一项为 (父多边形, 待分组的多边形列表)
        queue = deque([(None, candidates)])

        while queue:
            parent, group = queue.popleft()
            top = cls._split_level(group, nested)

            for poly in top:
                poly.id = next_id
                next_id += 1
                tree.polygons[poly.id] = poly
                if parent is None:
                    tree.roots.append(poly.id)
                else:
                    poly.parent = parent.id
                    parent.children.append(poly.id)

            for poly in top:
                if nested[id(poly)]:
                    queue.append((poly, nested[id(poly)]))

        logger.debug(f"build: {len(tree.roots)} 个顶层零件, 共 {len(tree.polygons)} 个多边形")
        return tree

    @staticmethod
    def _split_level(group: List[Polygon], nested: Dict[int, List[Polygon]]) -> List[Polygon]:
        """
        返回本层不被其他多边形包含的多边形
        多边形的第一个点落在另一个多边形内部时, 归入输入顺序中第一个匹配的多边形
        被归入的多边形随其容器移动到下一层再细分
        """
        top = []

        for i, poly in enumerate(group):
            container = None
            for j, other in enumerate(group):
                if i == j:
                    continue
                if GeometryUtil.point_in_polygon(poly[0], other) is True:
                    container = other
                    break

            if container is None:
                top.append(poly)
            else:
                nested[id(container)].append(poly)

        return top

    def __getitem__(self, polygon_id: int) -> Polygon:
        return self.polygons[polygon_id]

    def __contains__(self, polygon_id) -> bool:
        return polygon_id in self.polygons

    def __len__(self) -> int:
        return len(self.polygons)

    def top_level(self) -> List[Polygon]:
        return [self.polygons[i] for i in self.roots]

    def children(self, polygon_id: int) -> List[Polygon]:
        return [self.polygons[i] for i in self.polygons[polygon_id].children]

    def parent(self, polygon_id: int) -> Optional[Polygon]:
        parent_id = self.polygons[polygon_id].parent
        return None if parent_id is None else self.polygons[parent_id]

    def depth(self, polygon_id: int) -> int:
        depth = 0
        parent_id = self.polygons[polygon_id].parent
        while parent_id is not None:
            depth += 1
            parent_id = self.polygons[parent_id].parent
        return depth

    def is_hole(self, polygon_id: int) -> bool:
        """深度为奇数的多边形是孔"""
        return self.depth(polygon_id) % 2 == 1

    def descendants(self, polygon_id: int) -> List[Polygon]:
        """按广度优先顺序返回所有后代"""
        result = []
        queue = deque(self.polygons[polygon_id].children)
        while queue:
            poly = self.polygons[queue.popleft()]
            result.append(poly)
            queue.extend(poly.children)
        return result

    def normalize(self):
        """统一所有多边形的方向"""
        for poly in self.polygons.values():
            GeometryUtil.normalize_orientation(poly)

    def offset(self, distance: float, tolerance: float, scale: float):
        """
        偏移整棵树: 实体向外扩张 distance, 孔向内收缩 distance
        偏移结果不止一个环时保持原样
        """
        if not distance:
            return

        for poly_id, poly in self.polygons.items():
            sign = -1 if self.is_hole(poly_id) else 1
            paths = GeometryUtil.polygon_offset(poly, sign * distance, tolerance, scale)
            if len(paths) == 1:
                poly[:] = paths[0]
            else:
                logger.debug(f"offset: 多边形 {poly_id} 偏移后得到 {len(paths)} 个环, 保持不变")
