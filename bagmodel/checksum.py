"""
The checksum algorithms a bag can be configured with, along with the functions
for calculating digests with them.
"""
import hashlib, enum, logging

from bagit import HASH_BLOCK_SIZE

from .access.exceptions import FormatError

log = logging.getLogger(__name__)

class ChecksumAlgorithm(enum.Enum):
    """
    a supported checksum algorithm.  Each member knows its display name (e.g.
    "SHA-256") and the name used for it in BagIt manifest file names (e.g.
    "sha256"), which is also the name hashlib knows it by.
    """
    MD5    = ("MD5",     "md5")
    SHA1   = ("SHA-1",   "sha1")
    SHA256 = ("SHA-256", "sha256")
    SHA512 = ("SHA-512", "sha512")

    def __init__(self, display_name, bagit_name):
        self.display_name = display_name
        self.bagit_name = bagit_name

    @property
    def hashlib_name(self):
        return self.bagit_name

    @property
    def manifest_name(self):
        """
        the name of the payload manifest file for this algorithm
        """
        return "manifest-{0}.txt".format(self.bagit_name)

    @property
    def tagmanifest_name(self):
        """
        the name of the tag manifest file for this algorithm
        """
        return "tagmanifest-{0}.txt".format(self.bagit_name)

    def new(self):
        """
        return a new hashlib hash object for this algorithm
        """
        return hashlib.new(self.hashlib_name)

    def __str__(self):
        return self.display_name

    @classmethod
    def from_name(cls, name):
        """
        return the algorithm with the given name.  The name may be the display
        name ("SHA-1"), the BagIt name ("sha1") or the member name ("SHA1"),
        matched without regard to case; a ChecksumAlgorithm is returned as is.

        :raises FormatError:  if the name does not match a supported algorithm
        """
        if isinstance(name, cls):
            return name
        key = str(name).strip().lower()
        for alg in cls:
            if key in (alg.display_name.lower(), alg.bagit_name, alg.name.lower()):
                return alg
        raise FormatError("Unsupported checksum algorithm: " + str(name), name)

def sort_algorithms(algorithms):
    """
    return the given algorithms as a list in a stable order (by BagIt name)
    """
    return sorted(algorithms, key=lambda a: a.bagit_name)

def calculate_digests(fileobj, algorithms):
    """
    read a binary file stream to its end and return a dictionary mapping each
    of the given algorithms to the lowercase hex digest of its content.

    :param fileobj:     a file-like object opened for reading bytes
    :param algorithms:  the ChecksumAlgorithms to calculate digests with
    """
    hashers = dict((a, a.new()) for a in algorithms)
    while True:
        block = fileobj.read(HASH_BLOCK_SIZE)
        if not block:
            break
        for h in hashers.values():
            h.update(block)
    return dict((a, h.hexdigest().lower()) for a, h in hashers.items())

def digest(data, algorithm):
    """
    return the lowercase hex digest of the given bytes
    """
    h = ChecksumAlgorithm.from_name(algorithm).new()
    h.update(data)
    return h.hexdigest().lower()

def digest_file(filesys, path, algorithms):
    """
    return the digests of a file within a filesystem as a dictionary keyed by
    algorithm.

    :param fs.base.FS filesys:  the filesystem holding the file
    :param str path:            the path to the file within filesys
    :param algorithms:          the ChecksumAlgorithms to calculate digests with
    """
    log.debug("Calculating digests for %s", path)
    with filesys.openbin(path) as fd:
        return calculate_digests(fd, algorithms)
