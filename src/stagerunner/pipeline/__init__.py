"""
Pipeline module for stage script generation and execution.

Provides batch partitioning, worker/main script assembly, backend dispatch,
and sentinel marker tracking. build_scripts() can be called directly by an
external orchestrator, which then polls the sentinel markers.
"""
