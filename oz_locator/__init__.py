"""Opportunity Zone locator: spatial cache and point-in-zone resolution"""

__version__ = "0.1.0"
