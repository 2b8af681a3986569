"""
Study concept tournament engine
"""

__version__ = "1.0.0"
