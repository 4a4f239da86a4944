"""Dishwasher cycle detection from smart-camera events"""

__version__ = "1.0.0"
