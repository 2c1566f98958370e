"""Subsidy Pricing Hub - device subsidy reconciliation for dealer networks."""

__version__ = "0.1.0"
