"""
takehome — deterministic Indian salary / income-tax breakdown service.
"""
__version__ = "0.1.0"
