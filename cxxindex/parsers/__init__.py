"""Parsers package.

Translation-unit parsers and the recoverable error hierarchy they share.
"""
