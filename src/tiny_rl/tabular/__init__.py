"""
Tabular building blocks.

Includes:
- GridworldEnv: transition model with walls, slip tiles and goals
- feature mappers (goal-distance bands)
- ValueTable / QTable stores
- EpsilonGreedyPolicy
"""

from .gridworld import GridworldEnv, Goal, Position, Tile, TileKind
from .features import DistanceBands3Mapper, DistanceBandsMapper, FeatureMapper, make_feature_mapper
from .value_table import ValueTable
from .q_table import QTable
from .policy import EpsilonGreedyPolicy

__all__ = [
    "GridworldEnv",
    "Goal",
    "Position",
    "Tile",
    "TileKind",
    "DistanceBands3Mapper",
    "DistanceBandsMapper",
    "FeatureMapper",
    "make_feature_mapper",
    "ValueTable",
    "QTable",
    "EpsilonGreedyPolicy",
]
