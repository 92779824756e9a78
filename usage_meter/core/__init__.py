"""
Core modules for the usage meter.

This package contains period resolution, aggregation, budget
evaluation and report assembly.
"""
