"""
D&D 5th Edition handler.

Components:
- catalog: every fact a GM can hide on a 5e statblock
- handler: projection of 5e actor records into the standardized view model
"""

from .catalog import FIELD_CATALOG, SYSTEM_ID
from .handler import Dnd5eHandler

__all__ = ["FIELD_CATALOG", "SYSTEM_ID", "Dnd5eHandler"]
