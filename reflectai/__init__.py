"""
ReflectAI journal core: entry persistence, mood aggregation and AI analysis.
"""

__version__ = "1.0.0"
