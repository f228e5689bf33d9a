"""
reasonloop - a reasoning-loop engine for tool-using LLM agents.

Drives a model through Thought / Action / Observation turns, repairs and
parses its free-text output, dispatches tool calls, and streams progress
events to any number of observers.
"""

__version__ = "0.1.0"
