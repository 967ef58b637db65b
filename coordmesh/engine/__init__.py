"""Coordination engine - intake, proposals, consensus, execution.

Create one CoordinationEngine (coordmesh.engine.coordinator) per process and
start it inside a running event loop.
"""
