"""
Position Management Module

REST surface over the position engine: list, value, open, close and
threshold updates.

Author: FX Engine Team
"""
