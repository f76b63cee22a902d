"""Deployment verification tooling for the upgradeable Identity/Reputation/Validation registries."""

__version__ = "0.1.0"
