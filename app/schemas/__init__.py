"""
Schemas Module
==============

Pydantic models for the agent WebSocket protocol.
"""
