"""Salary calculation: profile contract, regime policy, tax pipeline, service, routes."""
