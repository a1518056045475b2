# visualize.py

import logging
from typing import List, Dict

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
from matplotlib.patches import Polygon as PolygonPatch

logger = logging.getLogger(__name__)


def _xy(polygon: List[Dict]):
    return [(p['x'], p['y']) for p in polygon]


def plot_result(bin_polygon: List[Dict], sheets: List[List[List[Dict]]], out_path: str, dpi: int = 150):
    """
    每个容器画一个子图
    bin_polygon: 对齐到原点的容器多边形
    sheets: 每个容器中零件变换后的轮廓 (SvgNest.placed_polygons 的返回值)
    """
    if not sheets:
        logger.warning("plot_result: 没有可绘制的结果")
        return None

    fig, axes = plt.subplots(1, len(sheets), figsize=(6 * len(sheets), 6), squeeze=False)

    xs = [p['x'] for p in bin_polygon]
    ys = [p['y'] for p in bin_polygon]

    for i, (ax, outlines) in enumerate(zip(axes[0], sheets)):
        ax.set_title(f"Sheet {i + 1} ({len(outlines)} parts)")
        ax.set_aspect("equal", adjustable="box")
        ax.add_patch(PolygonPatch(_xy(bin_polygon), closed=True, facecolor="#eeeeee",
                                  edgecolor="black", linewidth=1.5))

        for outline in outlines:
            ax.add_patch(PolygonPatch(_xy(outline), closed=True, facecolor="#aaddff",
                                      edgecolor="black", linewidth=0.8, alpha=0.9))

        ax.set_xlim(min(xs), max(xs))
        # SVG坐标系的y轴向下
        ax.set_ylim(max(ys), min(ys))

    fig.savefig(out_path, dpi=dpi, bbox_inches="tight")
    plt.close(fig)
    return out_path
