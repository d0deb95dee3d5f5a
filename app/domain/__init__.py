"""
Domain Package
==============
Value objects and exceptions shared by the event store, the rule engine, the
output dispatcher and the agent gateway.
"""
