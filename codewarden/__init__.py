"""
Codewarden - usage metering and quota enforcement for Code Police.
"""

__version__ = "0.1.0"
