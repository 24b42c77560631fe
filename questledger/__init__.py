"""
questledger - transactional progression and reward ledger engine.
"""

__version__ = "0.1.0"
