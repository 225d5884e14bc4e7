"""
Core package for shared utilities.

Configuration, structured logging, the error taxonomy, the operational
alert sink and the retry executor used across the marketplace backend.
"""
