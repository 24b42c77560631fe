"""
Persistence schema for questledger.
"""
