"""Agor Unix isolation - converge OS users, groups and permissions to the Agor database."""

from agor_isolation.reconciler import ReconcileOptions, Reconciler
from agor_isolation.report import ReconcileReport

__version__ = "0.1.0"

__all__ = ["ReconcileOptions", "ReconcileReport", "Reconciler", "__version__"]
