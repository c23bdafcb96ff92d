"""Database repositories for partmatch."""

from .match_data_repository import MatchDataRepository, SnapshotVersion
from .training_repository import TrainingRepository

__all__ = ["MatchDataRepository", "SnapshotVersion", "TrainingRepository"]
