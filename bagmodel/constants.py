"""
Common data about the bag layout and the defaults used when creating bags.
"""
import re

DEFAULT_VERSION = "0.97"
DEFAULT_ENCODING = "UTF-8"

PAYLOAD_DIR = "data"
BAGIT_TXT = "bagit.txt"
BAG_INFO_TXT = "bag-info.txt"
FETCH_TXT = "fetch.txt"
MANIFEST_FMT = "manifest-{0}.txt"
TAGMANIFEST_FMT = "tagmanifest-{0}.txt"

PAYLOAD_OXUM_KEY = "Payload-Oxum"
BAGGING_DATE_KEY = "Bagging-Date"
CREATED_KEY = "Created"
IS_VERSION_OF_KEY = "Is-Version-Of"
EASY_USER_ACCOUNT_KEY = "EASY-User-Account"

# stands in for the digest of a system-managed tag file until the bag is saved
UNKNOWN_DIGEST = "***unknown, will be recomputed on save***"

# tag files at the bag's root that only the library may write
PROTECTED_TAG_FILES = [re.compile(r) for r in
                       r"^bagit\.txt$ ^bag-info\.txt$ ^fetch\.txt$".split() +
                       r"^(tag)?manifest-(\w+)\.txt$".split()]

_manre = re.compile(r"^manifest-(\w+)\.txt$")
_tagmanre = re.compile(r"^tagmanifest-(\w+)\.txt$")

def is_protected(path):
    """
    return True if the given bag-root-relative path names a tag file that is
    managed by the library itself (bagit.txt, bag-info.txt, fetch.txt and the
    (tag)manifest files).
    """
    return '/' not in path and any(p.match(path) for p in PROTECTED_TAG_FILES)

def manifest_alg_name(path):
    """
    return the BagIt algorithm name if the path is a payload manifest at the
    root of the bag; otherwise None.
    """
    m = _manre.match(path)
    return m and m.group(1)

def tagmanifest_alg_name(path):
    """
    return the BagIt algorithm name if the path is a tag manifest at the
    root of the bag; otherwise None.
    """
    m = _tagmanre.match(path)
    return m and m.group(1)

def _2int(sint):
    try:
        return int(sint)
    except ValueError:
        return -1

class Version(object):
    """
    a BagIt version (major.minor) that can facilitate comparisons
    """

    def __init__(self, vers):
        """
        convert a version string or tuple to a Version instance
        """
        if isinstance(vers, Version):
            self._vs = vers._vs
            self.fields = vers.fields
        elif isinstance(vers, str):
            self._vs = vers
            self.fields = tuple(_2int(v) for v in self._vs.split('.'))
        elif isinstance(vers, tuple):
            self._vs = ".".join([str(v) for v in vers])
            self.fields = tuple(vers)
        else:
            raise TypeError("Input version is not str or tuple: " + str(vers))

    @property
    def major(self):
        return self.fields[0]

    @property
    def minor(self):
        return (len(self.fields) > 1 and self.fields[1]) or 0

    def __str__(self):
        return self._vs

    def __repr__(self):
        return "Version({0!r})".format(self._vs)

    def __hash__(self):
        return hash(self.fields)

    def __eq__(self, other):
        if not isinstance(other, Version):
            other = Version(other)
        return self.fields == other.fields

    def __lt__(self, other):
        if not isinstance(other, Version):
            other = Version(other)
        return self.fields < other.fields

    def __le__(self, other):
        if not isinstance(other, Version):
            other = Version(other)
        return self < other or self == other

    def __ge__(self, other):
        return not (self < other)
    def __gt__(self, other):
        return not self.__le__(other)
    def __ne__(self, other):
        return not (self == other)

class BagConfig(object):
    """
    the settings used to create a new bag: the checksum algorithms (applied to
    both the payload and the tag files), the initial bag-info entries, the
    BagIt version and the tag file encoding.
    """

    def __init__(self, algorithms=None, bag_info=None, version=DEFAULT_VERSION,
                 encoding=DEFAULT_ENCODING):
        """
        :param algorithms:  the checksum algorithms to use; if None, SHA-1 is
                            assumed.
        :type algorithms:   iterable of ChecksumAlgorithm or algorithm names
        :param bag_info:    the initial bag-info entries, either as a BagInfo,
                            a mapping of key to a value or a list of values, or
                            a list of (key, value) pairs
        :param version:     the BagIt version to declare in bagit.txt
        :param str encoding:  the encoding of the tag files
        """
        from .checksum import ChecksumAlgorithm
        from .baginfo import BagInfo

        if algorithms is None:
            algorithms = [ChecksumAlgorithm.SHA1]
        self.algorithms = frozenset(ChecksumAlgorithm.from_name(a)
                                    for a in algorithms)
        self.bag_info = BagInfo.from_mapping(bag_info)
        self.version = Version(version)
        self.encoding = encoding
