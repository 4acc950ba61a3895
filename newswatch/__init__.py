"""
newswatch - news event clustering and cross-stream correlation.
"""

__version__ = "0.1.0"
