"""Stackforge - dependency-ordered infrastructure provisioning"""

__version__ = "1.0.0"
