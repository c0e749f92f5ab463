"""
Support for payload files that are not stored in the bag but are listed in its
fetch.txt file, to be retrieved from a URL.

The registry itself never holds file content; content is retrieved (through a
fetcher) only to calculate digests or to turn a fetch item back into a real
payload file.  A fetcher is any object with a fetch(url, fileobj) method that
writes the bytes available at the URL into the given binary file object.
"""
import io, logging
from collections import namedtuple
from urllib.parse import urlparse

import requests
import fs.tempfs, fs.errors

from bagit import HASH_BLOCK_SIZE, _encode_filename, _decode_filename

from .constants import PAYLOAD_DIR
from .checksum import calculate_digests
from .access.exceptions import (AlreadyExists, NotFound, OutOfScope, FormatError,
                                BagIOError)

log = logging.getLogger(__name__)

FETCHABLE_SCHEMES = ("http", "https")
UNKNOWN_LENGTH = "-"

class FetchEntry(namedtuple("FetchEntry", "url length path")):
    """
    a single line of a fetch.txt file:  the URL the file can be retrieved
    from, its length in bytes (None if unknown) and its bag-root-relative
    destination (e.g. "data/sub/file.txt").
    """
    __slots__ = ()

    def format(self):
        length = UNKNOWN_LENGTH if self.length is None else str(self.length)
        return "{0} {1} {2}".format(self.url, length, _encode_filename(self.path))

def is_fetchable_url(url):
    """
    return True if the URL can be retrieved by the HTTPFetcher
    """
    parsed = urlparse(url)
    return parsed.scheme in FETCHABLE_SCHEMES and bool(parsed.netloc)

def in_payload(path):
    """
    return True if the bag-root-relative path lies strictly inside the payload
    directory
    """
    return path.startswith(PAYLOAD_DIR + '/') and len(path) > len(PAYLOAD_DIR) + 1 \
        and '..' not in path.split('/')

class FetchRegistry(object):
    """
    an immutable, ordered collection of FetchEntry items.  A destination path
    and a URL may each appear only once.  The methods that change the
    registry return a new FetchRegistry.
    """

    def __init__(self, entries=None):
        self._entries = ()
        for entry in (entries or []):
            self._entries = self.add(*entry)._entries

    def _with(self, entries):
        out = FetchRegistry()
        out._entries = tuple(entries)
        return out

    def add(self, url, length, path):
        """
        return a new registry with the given entry added

        :param str url:     the URL to retrieve the file from
        :param int length:  the file's size in bytes, or None if unknown
        :param str path:    the bag-root-relative destination of the file
        :raises OutOfScope:     if path is not inside the payload directory
        :raises AlreadyExists:  if path or url is already registered
        """
        if not in_payload(path):
            raise OutOfScope(path, "Fetch item destination must be inside the payload "
                                   "directory: " + path)
        if self.get_by_path(path):
            raise AlreadyExists(path, "Already listed in fetch.txt: " + path)
        if self.get_by_url(url):
            raise AlreadyExists(url, "URL already listed in fetch.txt: " + url)
        if length is not None:
            length = int(length)
        return self._with(self._entries + (FetchEntry(url, length, path),))

    def get_by_path(self, path):
        for e in self._entries:
            if e.path == path:
                return e
        return None

    def get_by_url(self, url):
        for e in self._entries:
            if e.url == url:
                return e
        return None

    def remove_by_path(self, path):
        """
        return a new registry without the entry for the given destination

        :raises NotFound:  if no entry has the given destination
        """
        entry = self.get_by_path(path)
        if not entry:
            raise NotFound(path, "Not listed in fetch.txt: " + path)
        return self.remove_entry(entry)

    def remove_by_url(self, url):
        """
        return a new registry without the entry for the given URL

        :raises NotFound:  if no entry has the given URL
        """
        entry = self.get_by_url(url)
        if not entry:
            raise NotFound(url, "URL not listed in fetch.txt: " + url)
        return self.remove_entry(entry)

    def remove_entry(self, entry):
        """
        return a new registry without the given entry.  If the entry is not
        registered, this registry is returned unchanged.
        """
        if entry not in self._entries:
            return self
        return self._with(e for e in self._entries if e != entry)

    def paths(self):
        return [e.path for e in self._entries]

    def urls(self):
        return [e.url for e in self._entries]

    def __iter__(self):
        return iter(self._entries)

    def __len__(self):
        return len(self._entries)

    def __bool__(self):
        return bool(self._entries)

    def __contains__(self, entry):
        return entry in self._entries

    def __eq__(self, other):
        if not isinstance(other, FetchRegistry):
            return NotImplemented
        return set(self._entries) == set(other._entries)

    def __ne__(self, other):
        out = self.__eq__(other)
        if out is NotImplemented:
            return out
        return not out

    def __repr__(self):
        return "FetchRegistry({0!r})".format(list(self._entries))

    def format(self):
        """
        return the contents of the fetch.txt file for this registry
        """
        return "".join(e.format()+"\n" for e in self._entries)

    @classmethod
    def parse(cls, lines):
        """
        create a registry from the lines of a fetch.txt file

        :raises FormatError:  if a line is not of the form "url length path"
        """
        if isinstance(lines, str):
            lines = lines.splitlines()
        entries = []
        for line in lines:
            line = line.strip()
            if not line:
                continue
            parts = line.split(None, 2)
            if len(parts) != 3:
                raise FormatError("Invalid fetch.txt line: " + line)
            entries.append((parts[0], parse_length(parts[1]), _decode_filename(parts[2])))
        return cls(entries)

def parse_length(length):
    """
    convert the length field of a fetch.txt line to an int (or None if the
    length is given as unknown)
    """
    if length is None or length == UNKNOWN_LENGTH:
        return None
    try:
        return int(length)
    except ValueError:
        raise FormatError("Invalid length in fetch.txt: " + str(length))

class HTTPFetcher(object):
    """
    a fetcher that retrieves files over HTTP(S) using the requests library
    """

    def __init__(self, timeout=30, session=None):
        """
        :param float timeout:  the seconds to wait for the server to respond
        :param requests.Session session:  the session to send requests with;
                               if None, a new one is created.
        """
        self.timeout = timeout
        if session is None:
            session = requests.Session()
        self.session = session

    def fetch(self, url, fileobj):
        """
        write the content available at the given URL into fileobj

        :raises FormatError:  if the URL does not use http or https
        :raises BagIOError:   if the retrieval fails
        """
        if not is_fetchable_url(url):
            raise FormatError("Not an http(s) URL: " + url, url)
        log.info("Retrieving %s", url)
        try:
            with self.session.get(url, stream=True, timeout=self.timeout) as resp:
                resp.raise_for_status()
                for chunk in resp.iter_content(chunk_size=HASH_BLOCK_SIZE):
                    fileobj.write(chunk)
        except requests.RequestException as ex:
            raise _fetch_failed(url, ex)

def _fetch_failed(url, ex):
    return BagIOError("Failed to retrieve {0}: {1}".format(url, str(ex)), url, ex)

def materialize(fetcher, url, algorithms):
    """
    retrieve the file available at the given URL into temporary storage and
    calculate its digests.  The retrieved bytes are discarded afterward.

    :param fetcher:     the fetcher to retrieve the file with
    :param str url:     the file's URL
    :param algorithms:  the ChecksumAlgorithms to calculate digests with
    :return:  a tuple of the file's size and a dictionary of its digests
              keyed by algorithm
    :raises BagIOError:  if the retrieval fails
    """
    try:
        with fs.tempfs.TempFS(identifier="bagmodel") as tmp:
            with tmp.openbin("download", "w") as fd:
                fetcher.fetch(url, fd)
            size = tmp.getsize("download")
            with tmp.openbin("download") as fd:
                digests = calculate_digests(fd, algorithms)
    except BagIOError:
        raise
    except (fs.errors.FSError, OSError) as ex:
        raise _fetch_failed(url, ex)

    log.debug("Retrieved %s (%d bytes)", url, size)
    return size, digests

def retrieve(fetcher, url):
    """
    retrieve the file available at the given URL and return its contents
    as bytes

    :raises BagIOError:  if the retrieval fails
    """
    buf = io.BytesIO()
    try:
        fetcher.fetch(url, buf)
    except BagIOError:
        raise
    except OSError as ex:
        raise _fetch_failed(url, ex)
    return buf.getvalue()
