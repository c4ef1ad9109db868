"""
Engines - pure domain logic with no I/O
"""
