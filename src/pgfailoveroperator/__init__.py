"""Kubernetes operator core for relocating PostgreSQL pods off retiring nodes
and coordinating Patroni switchovers.
"""
