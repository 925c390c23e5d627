"""
Dining Orders Service

Order lifecycle, realtime table collaboration and checkout for the
dine-in ordering platform.
"""

__version__ = "1.0.0"
