"""
Domain Events - ORM-level guards for estimate invariants.
"""
