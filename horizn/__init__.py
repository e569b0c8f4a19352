"""
horizn - self-hosted web analytics ingest engine.
"""
__version__ = "0.1.0"
