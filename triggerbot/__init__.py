"""
triggerbot: keeper that activates resting conditional orders once their
trigger condition is met.
"""

__version__ = "0.1.0"
