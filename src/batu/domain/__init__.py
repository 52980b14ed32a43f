"""
batu.domain

Pure business rules: plans, billing periods, KPI maths, optimization rules,
audit scoring and campaign status transitions.

Nothing in this package touches the database or the network.
"""
