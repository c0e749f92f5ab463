"""
exceptions that can be raised while reading, updating or saving a bag
"""
from .bagit import BagError

class BagModelError(BagError):
    """
    a general exception while working with a bag model.  Mutations that raise
    one of these leave the bag model they were called on untouched.
    """
    def __init__(self, message, path=None):
        """
        :param str message:  the exception's message
        :param str path:     the bag-root-relative path (or other item, such
                             as an algorithm or url) that the failure is about
        """
        self.path = path
        super(BagModelError, self).__init__(message)

    @property
    def message(self):
        return self.args[0]

class NotFound(BagModelError):
    """
    the referenced path, algorithm or fetch entry is not part of the bag
    """
    def __init__(self, path, message=None):
        if not message:
            message = "Not found in bag: " + str(path)
        super(NotFound, self).__init__(message, path)

class AlreadyExists(BagModelError):
    """
    the destination of an addition collides with something already in the bag
    """
    def __init__(self, path, message=None):
        if not message:
            message = "Already present in bag: " + str(path)
        super(AlreadyExists, self).__init__(message, path)

class OutOfScope(BagModelError):
    """
    a path escapes the payload directory or the bag's root directory
    """
    def __init__(self, path, message=None):
        if not message:
            message = "Path is outside of its allowed location in the bag: " + \
                      str(path)
        super(OutOfScope, self).__init__(message, path)

class ProtectedPath(BagModelError):
    """
    an attempt was made to add or remove a tag file that is managed by
    the library itself
    """
    def __init__(self, path, message=None):
        if not message:
            message = "Tag file is managed by the library and cannot be " + \
                      "added or removed: " + str(path)
        super(ProtectedPath, self).__init__(message, path)

class IsDirectory(BagModelError):
    """
    a single-file operation was given a directory
    """
    def __init__(self, path, message=None):
        if not message:
            message = "Cannot operate on a directory; only files are " + \
                      "allowed: " + str(path)
        super(IsDirectory, self).__init__(message, path)

class FormatError(BagModelError):
    """
    a stored metadata value (or a given value that should be stored) does not
    have the expected form
    """
    pass

class BagIOError(BagModelError, IOError):
    """
    reading from or writing to storage (or the network) failed.  When raised
    by a save, the bag on disk may be left inconsistent; re-read it before
    continuing.
    """
    def __init__(self, message, path=None, cause=None):
        self.cause = cause
        BagModelError.__init__(self, message, path)

class InvariantViolation(BagModelError):
    """
    the bag model cannot be saved in its current state (e.g. it has no
    payload manifest algorithm).  The model itself remains usable.
    """
    pass

class DigestMismatch(BagModelError):
    """
    downloaded content does not match the digests recorded in the payload
    manifests
    """
    def __init__(self, path, algorithm, expected, found):
        self.algorithm = algorithm
        self.expected = expected
        self.found = found
        message = "{0} digest mismatch for {1}: expected {2}, found {3}" \
                  .format(algorithm, path, expected, found)
        super(DigestMismatch, self).__init__(message, path)
