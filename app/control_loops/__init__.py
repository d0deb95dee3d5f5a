"""
Control Loops Package
=====================

The control layer of the application:
- Condition tree evaluation against the event store
- The rule engine that turns matched rules into desired output values
- The output dispatcher that records those values and commands bound devices
"""
