"""
Utilities for testing code that uses bagmodel:  generators of dummy payload
files and a fetcher that serves fetch items from memory.
"""
