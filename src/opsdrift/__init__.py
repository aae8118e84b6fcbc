"""
Ops drift engine.

Reconciles independently reported git states from server and pc observers,
classifies drift, rolls up repository families and builds the operations
attention feed.
"""

__version__ = "1.0.0"
