"""
WALI-OS Test Fixtures Package
Reusable factories and helpers shared by the test modules.
"""

from .factories import *
