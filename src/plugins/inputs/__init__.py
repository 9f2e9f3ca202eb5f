"""
Input plugins package.

Input plugins feed exposure requests into the controller.
"""

from plugins.inputs.base import InputPlugin

__all__ = ["InputPlugin"]
