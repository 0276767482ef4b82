"""
Fibcalc Engine - Business Services
"""

from .values_service import Submission, ValuesService

__all__ = [
    "Submission",
    "ValuesService",
]
