"""
Chapter/challenge progression: pure transitions plus the transactional service.
"""

from questledger.modules.progression.results import ProgressionResult, RepairResult
from questledger.modules.progression.service import ProgressionService

__all__ = ["ProgressionResult", "ProgressionService", "RepairResult"]
