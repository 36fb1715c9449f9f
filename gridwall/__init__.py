"""
Gridwall - collaborative control server for a shared video wall.
"""

__version__ = "1.0.0"
