"""
The in-memory form of a single manifest file:  a mapping of bag-root-relative
file paths to their digests under one checksum algorithm.
"""
import logging
from collections import OrderedDict

from bagit import _encode_filename, _decode_filename

from .access.exceptions import AlreadyExists, NotFound, FormatError

log = logging.getLogger(__name__)

class ManifestTable(object):
    """
    an immutable table of (path, digest) entries for one algorithm, covering
    either the payload files or the tag files of a bag.  The methods that
    change the table return a new ManifestTable.
    """

    def __init__(self, entries=None):
        """
        :param entries:  the initial (path, digest) pairs, either as a list of
                         pairs or as a mapping
        """
        if entries is None:
            entries = []
        elif hasattr(entries, 'items'):
            entries = entries.items()
        self._entries = OrderedDict()
        for path, digest in entries:
            if path in self._entries:
                raise AlreadyExists(path)
            self._entries[path] = digest.lower()

    def _with(self, entries):
        out = ManifestTable()
        out._entries = entries
        return out

    def add(self, path, digest):
        """
        return a new table with an entry for the given path added.

        :raises AlreadyExists:  if the path is already in the table; use
                                recompute() to change an entry's digest
        """
        if path in self._entries:
            raise AlreadyExists(path)
        entries = OrderedDict(self._entries)
        entries[path] = digest.lower()
        return self._with(entries)

    def remove(self, path):
        """
        return a new table without the entry for the given path

        :raises NotFound:  if the path is not in the table
        """
        if path not in self._entries:
            raise NotFound(path)
        entries = OrderedDict(self._entries)
        del entries[path]
        return self._with(entries)

    def recompute(self, path, digest):
        """
        return a new table where the given path is mapped to a new digest

        :raises NotFound:  if the path is not in the table
        """
        if path not in self._entries:
            raise NotFound(path)
        entries = OrderedDict(self._entries)
        entries[path] = digest.lower()
        return self._with(entries)

    def entries(self):
        """
        return a view of the (path, digest) pairs in the order they were added.
        The view can be iterated over any number of times.
        """
        return self._entries.items()

    def paths(self):
        return self._entries.keys()

    def get(self, path, default=None):
        return self._entries.get(path, default)

    def as_dict(self):
        return dict(self._entries)

    def __getitem__(self, path):
        return self._entries[path]

    def __contains__(self, path):
        return path in self._entries

    def __len__(self):
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    def __eq__(self, other):
        if not isinstance(other, ManifestTable):
            return NotImplemented
        return dict(self._entries) == dict(other._entries)

    def __ne__(self, other):
        out = self.__eq__(other)
        if out is NotImplemented:
            return out
        return not out

    def __repr__(self):
        return "ManifestTable({0!r})".format(list(self._entries.items()))

    def format(self):
        """
        return the contents of the manifest file for this table:  one
        "digest  path" line per entry, sorted by path.
        """
        return "".join("{0}  {1}\n".format(self._entries[p], _encode_filename(p))
                       for p in sorted(self._entries))

    @classmethod
    def parse(cls, lines):
        """
        create a table from the lines of a manifest file

        :param lines:  the manifest contents, either as a str or as an
                       iterable of lines
        """
        if isinstance(lines, str):
            lines = lines.splitlines()
        out = OrderedDict()
        for line in lines:
            entry = parse_manifest_line(line)
            if not entry:
                continue
            path, digest = entry
            if path in out:
                if out[path] != digest:
                    raise FormatError("Manifest lists {0} multiple times with "
                                      "conflicting values".format(path), path)
                log.warning("Manifest lists %s multiple times", path)
                continue
            out[path] = digest
        return cls(out)

def parse_manifest_line(line):
    """
    parse a line from a manifest file, returning a (path, digest) tuple, or
    None if the line is blank or a comment.

    :raises FormatError:  if the line is not of the form "digest  path"
    """
    line = line.strip()
    if not line or line.startswith('#'):
        return None
    parts = line.split(None, 1)
    if len(parts) != 2:
        raise FormatError("Invalid manifest line: " + line)
    return (_decode_filename(parts[1].lstrip('*')), parts[0].lower())
