"""
Service Organization
====================
Long-lived services are wired together by :class:`app.services.container.ServiceContainer`,
which owns their start-up and shutdown order.
"""
