"""Calculation rule engine for statutory payroll components."""

__version__ = "1.0.0"
