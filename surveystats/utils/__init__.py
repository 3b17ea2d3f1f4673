# Utility functions for survey statistics
"""
Utility modules:
- weights: Weighted estimators, standard errors, design effect, intervals
- validation: Data quality checks
"""

from . import validation as validation
from . import weights as weights

__all__ = ["validation", "weights"]
