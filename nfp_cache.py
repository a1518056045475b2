# nfp_cache.py

import logging
import os
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from typing import List, Dict, Optional, Callable, Iterable, NamedTuple, Sequence

from geometry_util import GeometryUtil

logger = logging.getLogger(__name__)


class NfpKey(NamedTuple):
    """
    NFP缓存键
    inside=True 表示 a 为容器, b 放在容器内部
    inside=False 表示 a 为已放置零件, b 放在其外部
    """
    a: int
    b: int
    inside: bool
    a_rotation: float
    b_rotation: float


class NfpShape(NamedTuple):
    """传给计算进程的多边形数据 (纯点列表, 可序列化)"""
    outline: List[Dict]
    holes: Sequence[List[Dict]] = ()


class NfpCache:
    """NFP缓存, 每个键只写入一次, 配置变化时整体清空"""

    def __init__(self):
        self._entries: Dict[NfpKey, List[List[Dict]]] = {}

    def __contains__(self, key: NfpKey) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: NfpKey) -> Optional[List[List[Dict]]]:
        """未计算过返回None, 计算过但无结果返回空列表"""
        return self._entries.get(key)

    def store(self, key: NfpKey, nfp: Optional[List[List[Dict]]]) -> bool:
        """写入一个结果, 已存在的键不覆盖"""
        if key in self._entries:
            return False
        self._entries[key] = nfp or []
        return True

    def missing(self, keys: Iterable[NfpKey]) -> List[NfpKey]:
        """去重后返回缓存中不存在的键, 保持首次出现的顺序"""
        seen = set()
        result = []
        for key in keys:
            if key in seen or key in self._entries:
                continue
            seen.add(key)
            result.append(key)
        return result

    def clear(self):
        self._entries.clear()


def _is_bigger(outer_bounds, inner_bounds):
    return outer_bounds['width'] > inner_bounds['width'] and outer_bounds['height'] > inner_bounds['height']


def compute_nfp(key: NfpKey, a: NfpShape, b: NfpShape, explore_concave: bool = False,
                use_holes: bool = False, scale: float = 10000000) -> List[List[Dict]]:
    """
    计算一对多边形的NFP
    返回的每个环都已统一方向; 多边形退化或无解时返回空列表
    """
    A = GeometryUtil.rotate_polygon(a.outline, key.a_rotation)
    B = GeometryUtil.rotate_polygon(b.outline, key.b_rotation)

    if len(A) < 3 or len(B) < 3:
        return []

    if key.inside:
        if GeometryUtil.is_rectangle(A, 0.001):
            nfp = GeometryUtil.no_fit_polygon_rectangle(A, B)
        else:
            nfp = GeometryUtil.no_fit_polygon(A, B, True, explore_concave)
    else:
        if explore_concave:
            nfp = GeometryUtil.no_fit_polygon(A, B, False, True)
        else:
            nfp = GeometryUtil.minkowski_difference(A, B, scale)

        # 外部NFP不可能小于A本身
        if nfp and abs(GeometryUtil.polygon_area(nfp[0])) < abs(GeometryUtil.polygon_area(A)):
            logger.warning(f"compute_nfp: {key} 的NFP面积小于静止多边形, 丢弃")
            nfp = None

    if not nfp:
        return []

    nfp = [loop for loop in nfp if len(loop) > 0]
    for loop in nfp:
        GeometryUtil.normalize_orientation(loop)

    # 孔内可放置区域追加在外环之后
    if not key.inside and use_holes and a.holes:
        bounds_b = GeometryUtil.get_polygon_bounds(B)
        for hole in a.holes:
            H = GeometryUtil.rotate_polygon(hole, key.a_rotation)
            if len(H) < 3 or not _is_bigger(GeometryUtil.get_polygon_bounds(H), bounds_b):
                continue
            if GeometryUtil.is_rectangle(H, 0.001):
                pockets = GeometryUtil.no_fit_polygon_rectangle(H, B)
            else:
                pockets = GeometryUtil.no_fit_polygon(H, B, True, explore_concave)
            for loop in pockets or []:
                if len(loop) > 2:
                    nfp.append(GeometryUtil.normalize_orientation(loop))

    return nfp


def process_nfp_pair(key: NfpKey, a: NfpShape, b: NfpShape, explore_concave: bool,
                     use_holes: bool, scale: float):
    """工作进程入口, 返回 (键, NFP)"""
    return key, compute_nfp(key, a, b, explore_concave, use_holes, scale)


class NfpWorkerPool:
    """并行计算缺失的NFP"""

    def __init__(self, max_workers: Optional[int] = None, use_processes: bool = True):
        self.max_workers = max_workers or os.cpu_count() or 1
        self.use_processes = use_processes
        self._executor = None

    def _get_executor(self):
        if self._executor is None:
            if self.use_processes:
                self._executor = ProcessPoolExecutor(max_workers=self.max_workers)
            else:
                self._executor = ThreadPoolExecutor(max_workers=self.max_workers)
        return self._executor

    def resolve_batch(self, cache: NfpCache, keys: Iterable[NfpKey], shapes: Dict[int, NfpShape],
                      config: Dict, progress: Optional[Callable[[float], None]] = None) -> int:
        """
        计算缓存中缺失的NFP并写入缓存
        单个计算出错只影响该键 (写入空结果), 不中断整批计算
        返回新计算的键数量
        """
        missing = cache.missing(keys)
        if not missing:
            return 0

        logger.debug(f"resolve_batch: 需要计算 {len(missing)} 个NFP")

        explore_concave = bool(config.get('exploreConcave'))
        use_holes = bool(config.get('useHoles'))
        scale = config.get('clipperScale', 10000000)

        done = 0

        def advance():
            nonlocal done
            done += 1
            if progress:
                progress(done / len(missing))

        executor = self._get_executor()
        futures = {}
        for key in missing:
            try:
                a, b = shapes[key.a], shapes[key.b]
            except KeyError as e:
                logger.warning(f"resolve_batch: {key} 引用了不存在的多边形 {e}, 记为空结果")
                cache.store(key, [])
                advance()
                continue
            fut = executor.submit(process_nfp_pair, key, a, b, explore_concave, use_holes, scale)
            futures[fut] = key

        for fut in as_completed(futures):
            key = futures[fut]
            try:
                _, nfp = fut.result()
            except Exception as e:
                logger.warning(f"resolve_batch: 计算 {key} 时出错: {e}")
                nfp = []

            cache.store(key, nfp)
            advance()

        return len(missing)

    def close(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
