# svg_parser.py

import copy
import logging
import math
import re
from typing import List, Dict, Optional

from lxml import etree
from svg.path import parse_path, Move, Line, Close, CubicBezier, QuadraticBezier, Arc

from geometry_util import GeometryUtil
from matrix import Matrix

logger = logging.getLogger(__name__)

SVG_NS = 'http://www.w3.org/2000/svg'

_NUMBER_RE = re.compile(r'[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?')

# 曲线细分的最大递归深度
MAX_SUBDIVISION = 12


def _local_name(element) -> Optional[str]:
    if not isinstance(element.tag, str):
        return None  # 注释和处理指令
    return etree.QName(element).localname


def _same_ns(element, name: str) -> str:
    namespace = etree.QName(element).namespace
    return f'{{{namespace}}}{name}' if namespace else name


def _float(element, name: str, default: float = 0.0) -> float:
    value = element.get(name)
    if value is None:
        return default
    match = _NUMBER_RE.search(value)
    return float(match.group()) if match else default


def _fmt(value: float) -> str:
    return f'{value:.6f}'.rstrip('0').rstrip('.') if value != int(value) else str(int(value))


def _points_attr(points: List[Dict]) -> str:
    return ' '.join(f"{_fmt(p['x'])},{_fmt(p['y'])}" for p in points)


def _complex_str(z: complex) -> str:
    return f'{_fmt(z.real)},{_fmt(z.imag)}'


class SvgParser:
    def __init__(self):
        """初始化SVG解析器"""
        self.svg = None
        self.svg_root = None
        self.style = None
        self.allowed_elements = ['svg', 'circle', 'ellipse', 'path', 'polygon', 'polyline', 'rect', 'line']
        self.conf = {
            'tolerance': 2,  # bezier->line段转换的最大边界
            'toleranceSvg': 0.005  # 去除重复端点的容差
        }

    def config(self, config: Dict):
        """配置解析器参数"""
        if 'tolerance' in config and not GeometryUtil.almost_equal(float(config['tolerance']), 0):
            self.conf['tolerance'] = float(config['tolerance'])

    def load(self, svg_string):
        """加载并解析SVG字符串, 返回svg根元素"""
        if not svg_string or not isinstance(svg_string, (str, bytes)):
            raise ValueError('invalid SVG string')

        if isinstance(svg_string, str):
            svg_string = svg_string.encode('utf-8')

        parser = etree.XMLParser(remove_blank_text=True)
        root = etree.fromstring(svg_string, parser)

        if _local_name(root) != 'svg':
            raise ValueError('SVG has no valid root element')

        self.svg = root.getroottree()
        self.svg_root = root
        logger.debug(f"load: 已解析SVG, {len(root)} 个子元素")
        return self.svg_root

    def get_style(self):
        """获取样式节点"""
        if self.svg_root is None:
            return None

        for child in self.svg_root:
            if _local_name(child) == 'style':
                self.style = child
                return child

        return None

    def clean(self):
        """
        清理SVG: 应用变换, 展平分组, 过滤不支持的元素, 拆分复合路径
        """
        if self.svg_root is None:
            return None

        # 样式节点在过滤前取出
        self.get_style()

        self.apply_transform(self.svg_root)
        self.flatten(self.svg_root)
        self.filter(self.allowed_elements)

        for path in list(self.svg_root.iter(_same_ns(self.svg_root, 'path'))):
            self.split_path(path)

        return self.svg_root

    # ===== 变换 =====

    def apply_transform(self, element, global_transform: Optional[Matrix] = None):
        """将transform属性应用到几何数据上, 并从元素上移除"""
        transform = Matrix.parse(element.get('transform'), global_transform)
        if 'transform' in element.attrib:
            del element.attrib['transform']

        name = _local_name(element)

        if name in ('svg', 'g'):
            for child in list(element):
                if _local_name(child) is not None:
                    self.apply_transform(child, transform)
            return

        if transform.is_identity() and name != 'path':
            return

        if name == 'path':
            self.transform_path(element, transform)
        elif name in ('rect', 'polygon', 'polyline', 'line', 'circle', 'ellipse'):
            points = self.polygonify(element)
            self._replace_with_polygon(element, [self._apply(transform, p) for p in points])

    @staticmethod
    def _apply(transform: Matrix, p: Dict) -> Dict:
        x, y = transform.calc(p['x'], p['y'])
        return {'x': x, 'y': y}

    def _replace_with_polygon(self, element, points: List[Dict]):
        polygon = etree.Element(_same_ns(element, 'polygon'))
        for key, value in element.attrib.items():
            if key not in ('x', 'y', 'width', 'height', 'cx', 'cy', 'r', 'rx', 'ry',
                           'x1', 'y1', 'x2', 'y2', 'points'):
                polygon.set(key, value)
        polygon.set('points', _points_attr(points))
        polygon.tail = element.tail
        element.getparent().replace(element, polygon)

    def transform_path(self, element, transform: Matrix):
        """变换路径数据, 同时转为绝对坐标"""
        d = element.get('d')
        if not d:
            return

        similarity = transform.is_similarity()
        commands = []

        for segment in parse_path(d):
            if isinstance(segment, Move):
                commands.append(f'M {_complex_str(transform.calc_complex(segment.end))}')
            elif isinstance(segment, Close):
                commands.append('Z')
            elif isinstance(segment, Line):
                commands.append(f'L {_complex_str(transform.calc_complex(segment.end))}')
            elif isinstance(segment, CubicBezier):
                commands.append('C ' + ' '.join(_complex_str(transform.calc_complex(z)) for z in
                                                (segment.control1, segment.control2, segment.end)))
            elif isinstance(segment, QuadraticBezier):
                commands.append('Q ' + ' '.join(_complex_str(transform.calc_complex(z)) for z in
                                                (segment.control, segment.end)))
            elif isinstance(segment, Arc):
                if similarity:
                    s = transform.scale_factor()
                    sweep = segment.sweep if transform.determinant() > 0 else not segment.sweep
                    commands.append(
                        f'A {_fmt(segment.radius.real * s)},{_fmt(segment.radius.imag * s)} '
                        f'{_fmt(segment.rotation + transform.rotation_angle())} '
                        f'{int(segment.arc)},{int(sweep)} '
                        f'{_complex_str(transform.calc_complex(segment.end))}'
                    )
                else:
                    # 非等比变换下圆弧不再是圆弧, 直接线性化
                    for p in self._linearize(segment)[1:]:
                        commands.append(f"L {_complex_str(transform.calc_complex(complex(p['x'], p['y'])))}")

        element.set('d', ' '.join(commands))

    # ===== 结构整理 =====

    def flatten(self, element):
        """展平SVG结构，移除g元素"""
        for child in list(element):
            self.flatten(child)

        if _local_name(element) == 'g':
            parent = element.getparent()
            if parent is None:
                return
            index = parent.index(element)
            for child in list(element):
                parent.insert(index, child)
                index += 1
            parent.remove(element)

    def filter(self, allowed_elements: List[str]):
        """移除不支持的元素 (文字, 注释等)"""
        if self.svg_root is None:
            return

        for child in list(self.svg_root):
            if _local_name(child) not in allowed_elements:
                self.svg_root.remove(child)

    def split_path(self, path) -> bool:
        """分割复合路径, 每个子路径成为单独的path元素"""
        if _local_name(path) != 'path' or path.getparent() is None:
            return False

        d = path.get('d')
        if not d:
            return False

        subpaths = re.split(r'(?=[Mm])', d.strip())
        subpaths = [s for s in subpaths if s.strip()]
        if len(subpaths) <= 1:
            return False

        # 转为绝对坐标后再拆分, 相对的m命令才能正确定位
        if any(s.lstrip().startswith('m') for s in subpaths[1:]):
            self.transform_path(path, Matrix())
            subpaths = [s for s in re.split(r'(?=[Mm])', path.get('d').strip()) if s.strip()]

        parent = path.getparent()
        index = parent.index(path)
        for sub in subpaths:
            sub_path = etree.Element(path.tag)
            for key, value in path.attrib.items():
                if key != 'd':
                    sub_path.set(key, value)
            sub_path.set('d', sub.strip())
            parent.insert(index, sub_path)
            index += 1

        parent.remove(path)
        return True

    # ===== 多边形化 =====

    def _linearize(self, segment) -> List[Dict]:
        """按平直度递归细分曲线, 返回包含起点和终点的点列表"""
        tolerance = self.conf['tolerance']

        def point(t):
            z = segment.point(t)
            return {'x': z.real, 'y': z.imag}

        def flat_enough(t0, t1):
            a = point(t0)
            b = point(t1)
            dx = b['x'] - a['x']
            dy = b['y'] - a['y']
            length = math.sqrt(dx * dx + dy * dy)
            for f in (0.25, 0.5, 0.75):
                p = point(t0 + (t1 - t0) * f)
                if length == 0:
                    dist = math.sqrt((p['x'] - a['x']) ** 2 + (p['y'] - a['y']) ** 2)
                else:
                    dist = abs((p['x'] - a['x']) * dy - (p['y'] - a['y']) * dx) / length
                if dist > tolerance:
                    return False
            return True

        result = [point(0)]

        def subdivide(t0, t1, depth):
            if depth >= MAX_SUBDIVISION or flat_enough(t0, t1):
                result.append(point(t1))
                return
            mid = (t0 + t1) / 2
            subdivide(t0, mid, depth + 1)
            subdivide(mid, t1, depth + 1)

        subdivide(0.0, 1.0, 0)
        return result

    def _ellipse_points(self, cx, cy, rx, ry) -> List[Dict]:
        radius = max(rx, ry)
        cosine = 1 - self.conf['tolerance'] / radius
        if cosine <= -1:
            num_segments = 3
        else:
            num_segments = max(math.ceil((2 * math.pi) / math.acos(cosine)), 3)

        return [{'x': cx + rx * math.cos(i * 2 * math.pi / num_segments),
                 'y': cy + ry * math.sin(i * 2 * math.pi / num_segments)}
                for i in range(num_segments)]

    def polygonify(self, element) -> List[Dict]:
        """将SVG元素转换为多边形点列表"""
        if element is None:
            return []

        name = _local_name(element)
        points = []

        if name in ('polygon', 'polyline'):
            values = [float(v) for v in _NUMBER_RE.findall(element.get('points', ''))]
            points = [{'x': values[i], 'y': values[i + 1]} for i in range(0, len(values) - 1, 2)]

        elif name == 'rect':
            x = _float(element, 'x')
            y = _float(element, 'y')
            width = _float(element, 'width')
            height = _float(element, 'height')

            points = [
                {'x': x, 'y': y},
                {'x': x + width, 'y': y},
                {'x': x + width, 'y': y + height},
                {'x': x, 'y': y + height}
            ]

        elif name == 'line':
            points = [
                {'x': _float(element, 'x1'), 'y': _float(element, 'y1')},
                {'x': _float(element, 'x2'), 'y': _float(element, 'y2')}
            ]

        elif name == 'circle':
            r = _float(element, 'r')
            if r > 0:
                points = self._ellipse_points(_float(element, 'cx'), _float(element, 'cy'), r, r)

        elif name == 'ellipse':
            rx = _float(element, 'rx')
            ry = _float(element, 'ry')
            if rx > 0 and ry > 0:
                points = self._ellipse_points(_float(element, 'cx'), _float(element, 'cy'), rx, ry)

        elif name == 'path':
            d = element.get('d')
            if not d:
                return points

            for segment in parse_path(d):
                if isinstance(segment, Move):
                    if points:
                        break  # 只取第一个子路径
                    points.append({'x': segment.end.real, 'y': segment.end.imag})
                elif isinstance(segment, (Line, Close)):
                    if not points:
                        points.append({'x': segment.start.real, 'y': segment.start.imag})
                    points.append({'x': segment.end.real, 'y': segment.end.imag})
                else:
                    linear = self._linearize(segment)
                    if not points:
                        points.append(linear[0])
                    points.extend(linear[1:])

        tol = self.conf['toleranceSvg']

        # 移除连续重复的点
        deduped = []
        for p in points:
            if deduped and GeometryUtil.almost_equal(p['x'], deduped[-1]['x'], tol) and \
                    GeometryUtil.almost_equal(p['y'], deduped[-1]['y'], tol):
                continue
            deduped.append(p)
        points = deduped

        # 移除重复的端点
        while (len(points) > 1 and
               GeometryUtil.almost_equal(points[0]['x'], points[-1]['x'], tol) and
               GeometryUtil.almost_equal(points[0]['y'], points[-1]['y'], tol)):
            points.pop()

        return points

    # ===== 输出 =====

    def apply_placement(self, sheets, tree, bin_element, bin_bounds: Dict) -> List[str]:
        """
        将放置结果生成SVG, 每个容器一个SVG字符串
        sheets: 每个容器的 Placement 列表
        tree: PartTree, 零件的 source 为原始SVG元素 (没有时直接输出多边形)
        bin_element: 容器的原始SVG元素
        bin_bounds: 容器对齐到原点前的包围盒
        """
        results = []

        for sheet in sheets:
            svg = etree.Element(f'{{{SVG_NS}}}svg', nsmap={None: SVG_NS})
            svg.set('version', '1.1')
            svg.set('width', _fmt(bin_bounds['width']))
            svg.set('height', _fmt(bin_bounds['height']))
            svg.set('viewBox', f"0 0 {_fmt(bin_bounds['width'])} {_fmt(bin_bounds['height'])}")

            if self.style is not None:
                svg.append(copy.deepcopy(self.style))

            if bin_element is not None:
                bin_clone = copy.deepcopy(bin_element)
                bin_clone.set('class', 'bin')
                bin_clone.set('transform', f"translate({_fmt(-bin_bounds['x'])} {_fmt(-bin_bounds['y'])})")
                svg.append(bin_clone)

            for placement in sheet:
                part = tree[placement.id]
                group = etree.SubElement(svg, f'{{{SVG_NS}}}g')
                group.set('transform', f'translate({_fmt(placement.x)} {_fmt(placement.y)}) '
                                       f'rotate({_fmt(placement.rotation)})')

                group.append(self._outline(part))
                for child in tree.descendants(part.id):
                    outline = self._outline(child)
                    if tree.is_hole(child.id):
                        outline.set('class', 'hole')
                    group.append(outline)

            results.append(etree.tostring(svg, pretty_print=True).decode('utf-8'))

        logger.debug(f"apply_placement: 生成 {len(results)} 个SVG")
        return results

    @staticmethod
    def _outline(polygon):
        if polygon.source is not None and not isinstance(polygon.source, int):
            return copy.deepcopy(polygon.source)
        element = etree.Element(f'{{{SVG_NS}}}polygon')
        element.set('points', _points_attr(polygon))
        return element
