"""Diagnostics module: backend connectivity checks."""

from .connectivity import CheckResult, ConnectivityReport, check_connectivity

__all__ = ["CheckResult", "ConnectivityReport", "check_connectivity"]
