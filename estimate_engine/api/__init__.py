"""
HTTP API layer of the estimate engine.
"""
