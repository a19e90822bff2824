"""
Core application infrastructure: configuration, logging, database, errors
"""
