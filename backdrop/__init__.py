"""
Portrait backdrop service.

Stages uploaded portraits in a bounded in-memory cache and renders them
centered over a blurred, cover-fit copy of themselves.
"""

__version__ = "1.0.0"
