"""
Ingestion pipeline: path mapping, directory creation, scheduling, retry.
"""
