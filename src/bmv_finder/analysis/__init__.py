"""Analysis over stored sales."""

from bmv_finder.analysis.bmv import annualised_growth, calculate_bmv

__all__ = ["annualised_growth", "calculate_bmv"]
