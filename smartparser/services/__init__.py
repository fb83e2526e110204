"""
Services package for SmartParser.

Contains:
- parser: Structured extraction pipeline and the SmartParser facade
"""

from .parser import SmartParser, create_smart_parser, get_smart_parser

__all__ = ["SmartParser", "create_smart_parser", "get_smart_parser"]
