"""
Command-line interface for the usage meter.
"""
