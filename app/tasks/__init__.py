"""
Compliance Cloud - Background Tasks Package

Celery background tasks and the delivery queue they publish to.
"""
