"""
Configuration loading for the usage meter.
"""
