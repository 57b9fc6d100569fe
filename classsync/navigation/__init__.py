"""Routing: route table, in-process router and the navigation guard."""

from classsync.navigation.guard import NavigationGuard, evaluate_role_layout, evaluate_root
from classsync.navigation.router import Router

__all__ = ["NavigationGuard", "Router", "evaluate_role_layout", "evaluate_root"]
