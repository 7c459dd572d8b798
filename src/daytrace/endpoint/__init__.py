"""HTTP API module for daytrace.

Serves the stored timeline, observations and batch states, and lets a
failed batch be reprocessed on demand.
"""
