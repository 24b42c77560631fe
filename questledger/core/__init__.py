"""
Core infrastructure: configuration, logging, database, events, validation.
"""
