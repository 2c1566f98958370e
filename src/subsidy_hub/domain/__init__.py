"""Subsidy hub domain layer.

Domain modules hold the pricing rules. They receive their data sources by
injection (see ``subsidy_hub.orchestration``) rather than constructing
readers themselves.
"""
