# genetic_algorithm.py

import logging
import random
from typing import List, Dict, Optional

from geometry_util import GeometryUtil

logger = logging.getLogger(__name__)


class Individual:
    """遗传算法中的个体: 零件顺序 + 对应的旋转角度"""

    def __init__(self, order: List[int], rotations: List[float], fitness=None):
        """
        Args:
            order: 零件ID的放置顺序
            rotations: 与 order 按位置对应的旋转角度
            fitness: None 表示尚未评估
        """
        self.order = order
        self.rotations = rotations
        self.fitness = fitness

    @property
    def evaluated(self) -> bool:
        return self.fitness is not None

    def copy(self) -> 'Individual':
        """复制个体, 保留适应度"""
        return Individual(list(self.order), list(self.rotations), self.fitness)

    def __repr__(self):
        return f"Individual(order={self.order}, rotations={self.rotations}, fitness={self.fitness})"


def _sort_key(individual: Individual):
    # 未评估的个体排在最后
    return (not individual.evaluated, individual.fitness or ())


class GeneticAlgorithm:
    """遗传算法类，用于优化零件的放置顺序和旋转角度"""

    def __init__(self, parts: List, bin_polygon: List[Dict], config: Dict, rng: Optional[random.Random] = None):
        """
        初始化遗传算法
        parts: 零件列表 (已按面积从大到小排序, 每个零件带 id)
        bin_polygon: 容器多边形
        config: 配置参数
        rng: 随机数生成器, 便于复现
        """
        self.parts = {part.id: part for part in parts}
        self.config = config
        self.rng = rng or random.Random()
        self.generation_number = 0
        self.bin_bounds = GeometryUtil.get_polygon_bounds(bin_polygon)

        count = max(int(config['rotations']), 1)
        self.angles = [i * (360 / count) for i in range(count)]

        # 初始个体: 面积从大到小, 每个零件一个能放进容器的随机角度
        adam = Individual([part.id for part in parts], [self.random_angle(part.id) for part in parts])
        self.population = [adam]

        while len(self.population) < config['populationSize']:
            self.population.append(self.mutate(adam))

    def random_angle(self, part_id: int) -> float:
        """为零件选择随机旋转角度, 优先选择旋转后包围盒能放进容器的角度"""
        angle_list = list(self.angles)
        self.rng.shuffle(angle_list)

        part = self.parts[part_id]
        for angle in angle_list:
            bounds = GeometryUtil.get_polygon_bounds(GeometryUtil.rotate_polygon(part, angle))

            # 如果旋转后的零件能放入容器，使用这个角度
            if (bounds['width'] < self.bin_bounds['width'] and
                    bounds['height'] < self.bin_bounds['height']):
                return angle

        return 0

    def _rate(self) -> float:
        return 0.01 * self.config['mutationRate']

    def mutate(self, individual: Individual) -> Individual:
        """
        变异操作: 按变异率交换两个随机位置 (ID和角度一起移动),
        并按变异率对每个角度重新取样
        """
        clone = Individual(list(individual.order), list(individual.rotations))
        size = len(clone.order)

        if size > 1 and self.rng.random() < self._rate():
            i, j = self.rng.sample(range(size), 2)
            clone.order[i], clone.order[j] = clone.order[j], clone.order[i]
            clone.rotations[i], clone.rotations[j] = clone.rotations[j], clone.rotations[i]

        for i in range(size):
            if self.rng.random() < self._rate():
                clone.rotations[i] = self.random_angle(clone.order[i])

        return clone

    def mate(self, male: Individual, female: Individual) -> List[Individual]:
        """单点顺序交叉, 生成两个子代, 结果始终是零件ID的排列"""
        cutpoint = round(min(max(self.rng.random(), 0.1), 0.9) * (len(male.order) - 1))

        children = []
        for first, second in ((male, female), (female, male)):
            order = first.order[:cutpoint]
            rotations = first.rotations[:cutpoint]
            taken = set(order)

            for part_id, rotation in zip(second.order, second.rotations):
                if part_id not in taken:
                    order.append(part_id)
                    rotations.append(rotation)
                    taken.add(part_id)

            for i in range(len(order)):
                if self.rng.random() < self._rate():
                    rotations[i] = self.random_angle(order[i])

            children.append(Individual(order, rotations))

        return children

    def generation(self) -> List[Individual]:
        """
        进行一代进化
        最优个体原样保留 (连同适应度), 其余位置由选择, 交叉和变异产生
        """
        self.population.sort(key=_sort_key)

        new_population = [self.population[0].copy()]

        while len(new_population) < self.config['populationSize']:
            male = self._random_weighted_individual()
            female = self._random_weighted_individual(male)

            children = self.mate(male, female)
            new_population.append(self.mutate(children[0]))

            if len(new_population) < self.config['populationSize']:
                new_population.append(self.mutate(children[1]))

        self.population = new_population
        self.generation_number += 1
        logger.debug(f"generation: 第 {self.generation_number} 代, 种群大小 {len(self.population)}")
        return self.population

    def _random_weighted_individual(self, exclude: Optional[Individual] = None) -> Individual:
        """
        从种群中随机选择个体，前面的个体（适应度更好）有更高的选择概率
        exclude: 要排除的个体
        """
        pop = [individual for individual in self.population if individual is not exclude]

        rand = self.rng.random()

        # 计算权重
        weight = 1 / len(pop)
        lower = 0
        upper = weight

        for i, individual in enumerate(pop):
            if lower <= rand < upper:
                return individual
            lower = upper
            upper += 2 * weight * ((len(pop) - i) / len(pop))

        return pop[0]

    def next_unevaluated(self) -> Optional[Individual]:
        """返回第一个尚未评估的个体"""
        for individual in self.population:
            if not individual.evaluated:
                return individual
        return None

    @property
    def best(self) -> Optional[Individual]:
        evaluated = [individual for individual in self.population if individual.evaluated]
        if not evaluated:
            return None
        return min(evaluated, key=_sort_key)
