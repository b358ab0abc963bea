"""
Infrastructure Layer - Repository implementations and the role-based permission checker.
"""
