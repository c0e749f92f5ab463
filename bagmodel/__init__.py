"""
a library for creating, reading and updating BagIt bags.

The central class is BagModel, an immutable model of a bag:  each operation
that changes a bag (adding or removing payload files, tag files, fetch items
or checksum algorithms, or updating the bag-info metadata) returns a new model,
and the bag's directory is only updated when the model is saved.  On save,
the manifests are brought up to date, including the tag manifests that list
the digests of the other manifests.
"""
from .constants import BagConfig, Version
from .checksum import ChecksumAlgorithm
from .manifest import ManifestTable
from .baginfo import BagInfo
from .fetch import FetchEntry, FetchRegistry, HTTPFetcher
from .bag import BagModel
from .persist import PersistenceEngine
from .access.bagit import open_bag, BagError, BagValidationError
from .access.exceptions import (BagModelError, NotFound, AlreadyExists, OutOfScope,
                                ProtectedPath, IsDirectory, FormatError, BagIOError,
                                InvariantViolation, DigestMismatch)
from .validate import BagValidator, ValidationResults
