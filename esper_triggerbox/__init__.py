"""
Protocol engine for ESPER multi-camera trigger boxes.

A Python asyncio driver that validates a trigger box over its serial (UART)
link and exposes its ASCII line protocol as typed commands.
"""

__version__ = "1.0.0"
