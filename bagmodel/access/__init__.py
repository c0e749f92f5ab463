"""
A subpackage for accessing a bag's contents on disk.

The :py:mod:`bagit` module provides the read-only interface to a bag (serialized
or not) used to load a bag model and to validate bags; the
:py:mod:`exceptions` module defines the errors raised by this library.
"""
