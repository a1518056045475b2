# matrix.py

import math
import re
from typing import List, Tuple, Optional

_TRANSFORM_RE = re.compile(r'(matrix|translate|scale|rotate|skewX|skewY)\s*\(([^)]*)\)')
_NUMBER_RE = re.compile(r'[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?')

IDENTITY = [1, 0, 0, 1, 0, 0]


class Matrix:
    """
    SVG 2D仿射变换矩阵, 格式 [a, b, c, d, e, f]
    变换按添加顺序组合, 与SVG transform属性中从左到右的书写顺序一致
    """

    def __init__(self, m: Optional[List[float]] = None):
        self.m: List[float] = list(m) if m else list(IDENTITY)

    @staticmethod
    def combine(m1: List[float], m2: List[float]) -> List[float]:
        """
        组合两个矩阵 m1 * m2 (先应用m2)
        """
        return [
            m1[0] * m2[0] + m1[2] * m2[1],
            m1[1] * m2[0] + m1[3] * m2[1],
            m1[0] * m2[2] + m1[2] * m2[3],
            m1[1] * m2[2] + m1[3] * m2[3],
            m1[0] * m2[4] + m1[2] * m2[5] + m1[4],
            m1[1] * m2[4] + m1[3] * m2[5] + m1[5]
        ]

    @classmethod
    def parse(cls, transform: Optional[str], base: Optional['Matrix'] = None) -> 'Matrix':
        """解析SVG transform属性, 结果组合在 base 之后"""
        matrix = base.copy() if base else cls()
        if not transform:
            return matrix

        for name, raw_args in _TRANSFORM_RE.findall(transform):
            args = [float(a) for a in _NUMBER_RE.findall(raw_args)]
            if name == 'matrix' and len(args) == 6:
                matrix.matrix(args)
            elif name == 'translate' and args:
                matrix.translate(args[0], args[1] if len(args) > 1 else 0)
            elif name == 'scale' and args:
                matrix.scale(args[0], args[1] if len(args) > 1 else args[0])
            elif name == 'rotate' and args:
                if len(args) >= 3:
                    matrix.rotate(args[0], args[1], args[2])
                else:
                    matrix.rotate(args[0])
            elif name == 'skewX' and args:
                matrix.skew_x(args[0])
            elif name == 'skewY' and args:
                matrix.skew_y(args[0])

        return matrix

    def copy(self) -> 'Matrix':
        return Matrix(self.m)

    def is_identity(self) -> bool:
        """检查是否为单位矩阵"""
        return self.m == IDENTITY

    def matrix(self, m: List[float]) -> 'Matrix':
        """追加一个变换矩阵"""
        if list(m) != IDENTITY:
            self.m = self.combine(self.m, list(m))
        return self

    def translate(self, tx: float, ty: float) -> 'Matrix':
        """追加平移变换"""
        if tx != 0 or ty != 0:
            self.m = self.combine(self.m, [1, 0, 0, 1, tx, ty])
        return self

    def scale(self, sx: float, sy: float) -> 'Matrix':
        """追加缩放变换"""
        if sx != 1 or sy != 1:
            self.m = self.combine(self.m, [sx, 0, 0, sy, 0, 0])
        return self

    def rotate(self, angle: float, rx: float = 0, ry: float = 0) -> 'Matrix':
        """
        追加旋转变换
        angle: 旋转角度(度)
        rx, ry: 旋转中心点
        """
        if angle != 0:
            rad = angle * math.pi / 180
            cos = math.cos(rad)
            sin = math.sin(rad)

            self.translate(rx, ry)
            self.m = self.combine(self.m, [cos, sin, -sin, cos, 0, 0])
            self.translate(-rx, -ry)
        return self

    def skew_x(self, angle: float) -> 'Matrix':
        if angle != 0:
            self.m = self.combine(self.m, [1, 0, math.tan(angle * math.pi / 180), 1, 0, 0])
        return self

    def skew_y(self, angle: float) -> 'Matrix':
        if angle != 0:
            self.m = self.combine(self.m, [1, math.tan(angle * math.pi / 180), 0, 1, 0, 0])
        return self

    def determinant(self) -> float:
        return self.m[0] * self.m[3] - self.m[1] * self.m[2]

    def is_similarity(self, tolerance: float = 1e-9) -> bool:
        """只包含平移, 旋转, 等比缩放和镜像时为True (圆弧变换后仍是圆弧)"""
        a, b, c, d = self.m[:4]
        return (abs(a * a + b * b - (c * c + d * d)) < tolerance and
                abs(a * c + b * d) < tolerance)

    def scale_factor(self) -> float:
        return math.sqrt(abs(self.determinant()))

    def rotation_angle(self) -> float:
        """旋转角度(度)"""
        return math.degrees(math.atan2(self.m[1], self.m[0]))

    def calc(self, x: float, y: float, is_relative: bool = False) -> Tuple[float, float]:
        """
        将变换应用到点(x,y)
        is_relative: 如果为True,则跳过平移部分
        """
        m = self.m
        return (
            x * m[0] + y * m[2] + (0 if is_relative else m[4]),
            x * m[1] + y * m[3] + (0 if is_relative else m[5])
        )

    def calc_complex(self, z: complex) -> complex:
        """svg.path 用复数表示点"""
        x, y = self.calc(z.real, z.imag)
        return complex(x, y)
