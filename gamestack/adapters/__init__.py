"""Workload adapters.

Each adapter implements the workload contract in `base.py` for one game
server type; the orchestrator only ever talks to adapters through it.
"""
