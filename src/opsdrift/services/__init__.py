"""
State store accessor and the drift service.
"""
