"""
This module provides the BagModel class, the immutable in-memory model of a
bag.

A BagModel tracks the bag's payload manifests, tag manifests, fetch items and
bag-info metadata.  Every operation that changes the bag returns a new BagModel
and leaves the original untouched; none of them write to the bag's directory.
Files that are added or removed are staged within the model until save() is
called, which is the only operation that brings the directory in line with
the model.

A typical use:

    bag = BagModel.empty("/data/mybag", algorithms=["sha256"])
    bag = bag.add_payload_file(b"hello world", "greeting.txt") \\
             .add_tag_file("/tmp/notes.txt", "metadata/notes.txt") \\
             .with_created()
    bag = bag.save()
"""
import os, io, copy, codecs, uuid, logging
from collections import OrderedDict

import fs.osfs, fs.path, fs.errors

from .constants import (DEFAULT_VERSION, DEFAULT_ENCODING, PAYLOAD_DIR, BAGIT_TXT,
                        BAG_INFO_TXT, FETCH_TXT, UNKNOWN_DIGEST, Version, BagConfig,
                        is_protected)
from .checksum import (ChecksumAlgorithm, calculate_digests, digest, digest_file,
                       sort_algorithms)
from .manifest import ManifestTable
from .baginfo import BagInfo
from .fetch import (FetchEntry, FetchRegistry, HTTPFetcher, is_fetchable_url, in_payload,
                    parse_length, materialize, retrieve)
from .persist import PersistenceEngine
from .access.bagit import ReadOnlyBag, BagError, MANIFEST, TAGMANIFEST
from .access.exceptions import (BagModelError, NotFound, AlreadyExists, OutOfScope,
                                ProtectedPath, IsDirectory, FormatError, BagIOError,
                                InvariantViolation, DigestMismatch)

log = logging.getLogger(__name__)

def system_tag_files(payload_algorithms, has_fetch=False):
    """
    return the names of the tag files managed by the library that a bag with
    the given payload algorithms contains (excluding tag manifests)
    """
    out = [BAGIT_TXT, BAG_INFO_TXT]
    out += [a.manifest_name for a in sort_algorithms(payload_algorithms)]
    if has_fetch:
        out.append(FETCH_TXT)
    return out

class BagModel(object):
    """
    an immutable model of a bag stored in a directory.

    Payload paths given to the operations are relative to the payload (data)
    directory; tag file paths are relative to the bag's root directory.  The
    keys of the manifests (and the destinations of fetch items) are relative
    to the bag's root directory (e.g. "data/sub/file.txt").
    """

    def __init__(self, base_dir, version=DEFAULT_VERSION, encoding=DEFAULT_ENCODING,
                 bag_info=None, payload_manifests=None, tag_manifests=None, fetch=None,
                 fetcher=None):
        """
        create a model of the bag in the given directory.  The factory methods,
        empty(), create_from_data() and read(), are the usual way to get a
        BagModel.

        :param str base_dir:  the path to the bag's root directory
        :param version:       the BagIt version of the bag
        :param str encoding:  the encoding of the bag's tag files
        :param bag_info:      the bag's metadata (see BagInfo.from_mapping())
        :param dict payload_manifests:  ManifestTables keyed by ChecksumAlgorithm
                              for the payload files
        :param dict tag_manifests:  ManifestTables keyed by ChecksumAlgorithm
                              for the tag files
        :param FetchRegistry fetch:  the bag's fetch items
        :param fetcher:       the object to retrieve fetch items with; if None,
                              an HTTPFetcher is used.
        """
        self._base_dir = os.path.abspath(base_dir)
        self._version = Version(version)
        self._encoding = encoding
        self._bag_info = BagInfo.from_mapping(bag_info)
        self._payload = dict(payload_manifests or {})
        self._tags = dict(tag_manifests or {})
        self._fetch = fetch or FetchRegistry()
        if fetcher is None:
            fetcher = HTTPFetcher()
        self._fetcher = fetcher
        self._added = OrderedDict()
        self._removed = frozenset()

    def _evolve(self, **kw):
        out = copy.copy(self)
        for name, value in kw.items():
            setattr(out, '_'+name, value)
        return out

    def __repr__(self):
        return "BagModel({0!r})".format(self._base_dir)

    # Factories

    @classmethod
    def empty(cls, base_dir, algorithms=None, bag_info=None, version=DEFAULT_VERSION,
              encoding=DEFAULT_ENCODING, config=None, fetcher=None):
        """
        create a new bag without any payload in the given directory and return
        its model.  The bag is written to disk.

        :param str base_dir:  the directory to create the bag in; it must not
                              already exist
        :param algorithms:    the checksum algorithms for both the payload and
                              the tag manifests (default: SHA-1)
        :param bag_info:      the initial bag-info metadata
        :param version:       the BagIt version to declare
        :param str encoding:  the encoding for the tag files
        :param BagConfig config:  the creation settings; if given, algorithms,
                              bag_info, version and encoding are ignored
        :raises AlreadyExists:  if base_dir already exists
        :raises InvariantViolation:  if no algorithm is given
        """
        if config is None:
            config = BagConfig(algorithms, bag_info, version, encoding)
        if not config.algorithms:
            raise InvariantViolation("At least one checksum algorithm is required")

        base_dir = os.path.abspath(base_dir)
        if os.path.exists(base_dir):
            raise AlreadyExists(base_dir, "Bag directory already exists: " + base_dir)

        try:
            with fs.osfs.OSFS(base_dir, create=True) as bagfs:
                bagfs.makedir(PAYLOAD_DIR)
        except fs.errors.FSError as ex:
            raise BagIOError("Unable to create bag directory: " + base_dir, base_dir, ex)

        log.info("Creating empty bag in %s", base_dir)
        tagentries = [(p, UNKNOWN_DIGEST) for p in system_tag_files(config.algorithms)]
        model = cls(base_dir, config.version, config.encoding, config.bag_info,
                    dict((a, ManifestTable()) for a in config.algorithms),
                    dict((a, ManifestTable(tagentries)) for a in config.algorithms),
                    fetcher=fetcher)
        return model.save()

    @classmethod
    def create_from_data(cls, payload_dir, algorithms=None, bag_info=None,
                         version=DEFAULT_VERSION, encoding=DEFAULT_ENCODING, config=None,
                         fetcher=None):
        """
        turn an existing directory into a bag:  its contents are moved into
        a data subdirectory and the bag's manifests are calculated from them.
        The bag is written to disk.

        :param str payload_dir:  the directory holding the files that become
                              the bag's payload; it becomes the bag's root
                              directory.
        :raises NotFound:     if payload_dir does not exist
        :raises InvariantViolation:  if no algorithm is given
        """
        if config is None:
            config = BagConfig(algorithms, bag_info, version, encoding)
        if not config.algorithms:
            raise InvariantViolation("At least one checksum algorithm is required")

        base_dir = os.path.abspath(payload_dir)
        if not os.path.isdir(base_dir):
            raise NotFound(base_dir, "Directory not found: " + base_dir)

        log.info("Creating bag from the contents of %s", base_dir)
        algs = sort_algorithms(config.algorithms)
        entries = dict((a, []) for a in algs)
        try:
            with fs.osfs.OSFS(base_dir) as bagfs:
                tmp = "tmp-" + uuid.uuid4().hex
                bagfs.makedir(tmp)
                for name in bagfs.listdir("/"):
                    if name == tmp:
                        continue
                    if bagfs.isdir(name):
                        bagfs.movedir(name, fs.path.join(tmp, name), create=True)
                    else:
                        bagfs.move(name, fs.path.join(tmp, name))
                bagfs.movedir(tmp, PAYLOAD_DIR, create=True)

                for path in sorted(bagfs.walk.files(PAYLOAD_DIR)):
                    path = path.lstrip('/')
                    digests = digest_file(bagfs, path, algs)
                    for a in algs:
                        entries[a].append((path, digests[a]))
        except fs.errors.FSError as ex:
            raise BagIOError("Unable to move payload into place in " + base_dir, base_dir, ex)

        tagentries = [(p, UNKNOWN_DIGEST) for p in system_tag_files(algs)]
        model = cls(base_dir, config.version, config.encoding, config.bag_info,
                    dict((a, ManifestTable(entries[a])) for a in algs),
                    dict((a, ManifestTable(tagentries)) for a in algs),
                    fetcher=fetcher)
        return model.save()

    @classmethod
    def read(cls, base_dir, fetcher=None):
        """
        load the model of the bag stored in the given directory

        :raises NotFound:     if the directory does not exist
        :raises FormatError:  if the directory does not contain a readable bag
        """
        base_dir = os.path.abspath(base_dir)
        if not os.path.isdir(base_dir):
            raise NotFound(base_dir, "Bag directory not found: " + base_dir)

        try:
            with ReadOnlyBag(base_dir) as rob:
                bag_info = BagInfo(rob.info_items())
                fetch = FetchRegistry((url, parse_length(size), path)
                                      for url, size, path in rob.fetch_entries())
                payload = dict((ChecksumAlgorithm.from_name(name), ManifestTable(entries))
                               for name, entries in rob.manifest_entries(MANIFEST).items())
                tags = dict((ChecksumAlgorithm.from_name(name), ManifestTable(entries))
                            for name, entries in rob.manifest_entries(TAGMANIFEST).items())
        except BagModelError:
            raise
        except BagError as ex:
            raise FormatError("Not a readable bag: {0}: {1}".format(base_dir, str(ex)),
                              base_dir)
        except (fs.errors.FSError, OSError) as ex:
            raise BagIOError("Unable to read bag in " + base_dir, base_dir, ex)

        log.debug("Read bag %s", base_dir)
        return cls(base_dir, rob.version_info, rob.encoding, bag_info, payload, tags, fetch,
                   fetcher)

    # Accessors

    @property
    def base_dir(self):
        """
        the path to the bag's root directory
        """
        return self._base_dir

    @property
    def payload_dir(self):
        """
        the path to the bag's payload (data) directory
        """
        return os.path.join(self._base_dir, PAYLOAD_DIR)

    @property
    def version(self):
        return self._version

    @property
    def encoding(self):
        return self._encoding

    @property
    def bag_info(self):
        """
        the bag's metadata as a BagInfo.  Payload-Oxum and Bagging-Date are
        updated when the bag is saved.
        """
        return self._bag_info

    @property
    def payload_manifest_algorithms(self):
        return frozenset(self._payload)

    @property
    def tag_manifest_algorithms(self):
        return frozenset(self._tags)

    @property
    def payload_manifests(self):
        """
        the payload manifests as a dictionary of ManifestTables keyed by
        ChecksumAlgorithm
        """
        return dict(self._payload)

    @property
    def tag_manifests(self):
        """
        the tag manifests as a dictionary of ManifestTables keyed by
        ChecksumAlgorithm
        """
        return dict(self._tags)

    @property
    def fetch(self):
        """
        the bag's fetch items as a FetchRegistry
        """
        return self._fetch

    @property
    def fetch_items(self):
        return list(self._fetch)

    @property
    def fetcher(self):
        return self._fetcher

    @property
    def pending_additions(self):
        """
        the files that will be written on the next save, as a dictionary mapping
        bag-root-relative paths to the content (bytes) captured when each file
        was added
        """
        return OrderedDict(self._added)

    @property
    def pending_removals(self):
        """
        the bag-root-relative paths of the files that will be deleted on the
        next save
        """
        return self._removed

    def has_pending_changes(self):
        return bool(self._added or self._removed)

    def payload_files(self):
        """
        return the bag-root-relative paths of the payload files held in the
        bag (including those pending a save, but not fetch items), sorted
        """
        return [p for p in self._real_files() if p.startswith(PAYLOAD_DIR+'/')]

    def tag_files(self):
        """
        return the bag-root-relative paths of the tag files that were added
        to the bag by the user (i.e. excluding the files managed by the
        library), sorted
        """
        return [p for p in self._real_files()
                if not p.startswith(PAYLOAD_DIR+'/') and not is_protected(p)]

    def created(self):
        return self._bag_info.created()

    def is_version_of(self):
        return self._bag_info.is_version_of()

    def easy_user_account(self):
        return self._bag_info.easy_user_account()

    # Storage view

    def _open_fs(self):
        try:
            return fs.osfs.OSFS(self._base_dir)
        except fs.errors.CreateFailed as ex:
            raise BagIOError("Unable to open bag directory: " + self._base_dir,
                             self._base_dir, ex)

    def _real_files(self):
        with self._open_fs() as bagfs:
            ondisk = set(p.lstrip('/') for p in bagfs.walk.files())
        return sorted((ondisk - self._removed) | set(self._added))

    def _is_file(self, bagfs, path):
        if path in self._added:
            return True
        return path not in self._removed and bagfs.isfile(path)

    def _is_dir(self, bagfs, path):
        # a directory is present only while it holds a file not pending removal
        pfx = path + '/'
        if any(p.startswith(pfx) for p in self._added):
            return True
        if not bagfs.isdir(path):
            return False
        return any(p.lstrip('/') not in self._removed for p in bagfs.walk.files(path))

    def _check_free(self, bagfs, path):
        # the destination and its ancestors must not be files or fetch items
        fetched = self._fetch.paths()
        if path in fetched:
            raise AlreadyExists(path, "Already present in bag as a fetch item: " + path)
        if self._is_file(bagfs, path):
            raise AlreadyExists(path)
        if self._is_dir(bagfs, path):
            raise AlreadyExists(path, "Already present in bag as a directory: " + path)
        parent = fs.path.dirname(path)
        while parent and parent != PAYLOAD_DIR:
            if parent in fetched or self._is_file(bagfs, parent):
                raise AlreadyExists(parent)
            parent = fs.path.dirname(parent)

    def _digests(self, bagfs, path, algorithms):
        if path in self._added:
            return _digest_source(self._added[path], algorithms)
        try:
            return digest_file(bagfs, path, algorithms)
        except fs.errors.FSError as ex:
            raise BagIOError("Unable to read " + path, path, ex)

    def _size(self, bagfs, path):
        if path in self._added:
            return len(self._added[path])
        return bagfs.getsize(path)

    # Path resolution

    def _payload_path(self, path_in_data):
        pth = str(path_in_data)
        if fs.path.isabs(pth) or os.path.isabs(pth):
            raise OutOfScope(pth)
        try:
            path = fs.path.normpath(PAYLOAD_DIR + '/' + pth)
        except fs.errors.IllegalBackReference:
            raise OutOfScope(pth)
        if not in_payload(path):
            raise OutOfScope(pth, "Path is outside of the payload directory: " + pth)
        return path

    def _tag_path(self, path_in_bag):
        pth = str(path_in_bag)
        if fs.path.isabs(pth) or os.path.isabs(pth):
            raise OutOfScope(pth)
        try:
            path = fs.path.normpath(pth)
        except fs.errors.IllegalBackReference:
            raise OutOfScope(pth)
        if not path or path == PAYLOAD_DIR or path.startswith(PAYLOAD_DIR+'/'):
            raise OutOfScope(pth, "Tag files must be outside of the payload directory: "+pth)
        if is_protected(path):
            raise ProtectedPath(path)
        return path

    # File operations

    def _add_files(self, src, dest, scope):
        items = _source_items(src, dest)
        with self._open_fs() as bagfs:
            for path, content in items:
                self._check_free(bagfs, path)

        tables = dict(self._payload if scope == MANIFEST else self._tags)
        algs = list(tables)
        added = OrderedDict(self._added)
        removed = set(self._removed)
        for path, content in items:
            digests = _digest_source(content, algs)
            for a in algs:
                tables[a] = tables[a].add(path, digests[a])
            added[path] = content
            removed.discard(path)

        if scope == MANIFEST:
            return self._evolve(payload=tables, added=added, removed=frozenset(removed))
        return self._evolve(tags=tables, added=added, removed=frozenset(removed))

    def _remove_file(self, path, scope):
        with self._open_fs() as bagfs:
            if self._is_dir(bagfs, path):
                raise IsDirectory(path)
            if not self._is_file(bagfs, path):
                raise NotFound(path)
            ondisk = bagfs.isfile(path)

        added = OrderedDict(self._added)
        added.pop(path, None)
        removed = self._removed
        if ondisk:
            removed = removed | frozenset([path])

        tables = self._payload if scope == MANIFEST else self._tags
        tables = dict((a, (t.remove(path) if path in t else t)) for a, t in tables.items())

        if scope == MANIFEST:
            return self._evolve(payload=tables, added=added, removed=removed)
        return self._evolve(tags=tables, added=added, removed=removed)

    def add_payload_file(self, src, path_in_data):
        """
        add a file (or a directory of files) to the bag's payload.

        :param src:  the content to add:  either bytes, a file object opened
                     for reading bytes, or the path to a file or directory on
                     local disk.  A directory's contents are added recursively.
        :param str path_in_data:  the destination, relative to the payload
                     directory
        :raises OutOfScope:     if the destination is outside of the payload
                                directory
        :raises AlreadyExists:  if the destination (or, for a directory, one of
                                its files) is already in the bag as a file or
                                fetch item
        :raises NotFound:       if src is a path that does not exist
        """
        return self._add_files(src, self._payload_path(path_in_data), MANIFEST)

    def remove_payload_file(self, path_in_data):
        """
        remove a single file from the bag's payload.  On save, any directories
        left empty by the removal are deleted as well (except the payload
        directory itself).

        :raises NotFound:     if the file is not in the payload (fetch items
                              are removed with the remove_fetch_item methods)
        :raises IsDirectory:  if the path refers to a directory
        :raises OutOfScope:   if the path is outside of the payload directory
        """
        path = self._payload_path(path_in_data)
        if path in self._fetch.paths():
            raise NotFound(path, "Payload file is a fetch item; use "
                                 "remove_fetch_item_by_path(): " + path)
        return self._remove_file(path, MANIFEST)

    def add_tag_file(self, src, path_in_bag):
        """
        add a file (or a directory of files) to the bag outside of its payload
        directory.

        :param src:  the content to add (see add_payload_file())
        :param str path_in_bag:  the destination, relative to the bag's root
        :raises OutOfScope:     if the destination is inside the payload
                                directory or outside the bag
        :raises ProtectedPath:  if the destination is one of the tag files
                                managed by the library
        :raises AlreadyExists:  if the destination is already in the bag
        """
        return self._add_files(src, self._tag_path(path_in_bag), TAGMANIFEST)

    def remove_tag_file(self, path_in_bag):
        """
        remove a single tag file from the bag

        :raises NotFound:       if the file is not in the bag
        :raises IsDirectory:    if the path refers to a directory
        :raises ProtectedPath:  if the file is managed by the library
        :raises OutOfScope:     if the path is inside the payload directory
                                or outside the bag
        """
        return self._remove_file(self._tag_path(path_in_bag), TAGMANIFEST)

    # Algorithms

    def add_payload_manifest_algorithm(self, algorithm, force_recompute=False):
        """
        add a checksum algorithm for the payload files, calculating a digest
        for every payload file.  Fetch items are retrieved to calculate theirs.

        :param algorithm:  the ChecksumAlgorithm (or its name) to add
        :param bool force_recompute:  if the algorithm is already in use, its
                           digests are recalculated when True; when False
                           (default), the current digests are kept and this
                           model is returned as is.
        """
        alg = ChecksumAlgorithm.from_name(algorithm)
        if alg in self._payload and not force_recompute:
            return self

        entries = []
        with self._open_fs() as bagfs:
            for path in self.payload_files():
                entries.append((path, self._digests(bagfs, path, [alg])[alg]))
        for entry in self._fetch:
            size, digests = materialize(self._fetcher, entry.url, [alg])
            entries.append((entry.path, digests[alg]))

        payload = dict(self._payload)
        payload[alg] = ManifestTable(entries)
        tags = _mark_pending(self._tags, alg.manifest_name)
        return self._evolve(payload=payload, tags=tags)

    def remove_payload_manifest_algorithm(self, algorithm):
        """
        stop using a checksum algorithm for the payload files.  Removing the
        last one is allowed, but such a bag cannot be saved until another
        is added.

        :raises NotFound:  if the algorithm is not in use
        """
        alg = ChecksumAlgorithm.from_name(algorithm)
        if alg not in self._payload:
            raise NotFound(alg, "Payload manifest algorithm not in use: " + str(alg))
        payload = dict(self._payload)
        del payload[alg]
        tags = _without_entry(self._tags, alg.manifest_name)
        return self._evolve(payload=payload, tags=tags)

    def add_tag_manifest_algorithm(self, algorithm, force_recompute=False):
        """
        add a checksum algorithm for the tag files.  The digests of the tag
        files managed by the library are calculated on save.

        :param algorithm:  the ChecksumAlgorithm (or its name) to add
        :param bool force_recompute:  recalculate the digests if the algorithm
                           is already in use
        """
        alg = ChecksumAlgorithm.from_name(algorithm)
        if alg in self._tags and not force_recompute:
            return self

        entries = [(p, UNKNOWN_DIGEST)
                   for p in system_tag_files(self._payload, bool(self._fetch))]
        with self._open_fs() as bagfs:
            for path in self.tag_files():
                entries.append((path, self._digests(bagfs, path, [alg])[alg]))

        tags = dict(self._tags)
        tags[alg] = ManifestTable(entries)
        return self._evolve(tags=tags)

    def remove_tag_manifest_algorithm(self, algorithm):
        """
        stop using a checksum algorithm for the tag files

        :raises NotFound:  if the algorithm is not in use
        """
        alg = ChecksumAlgorithm.from_name(algorithm)
        if alg not in self._tags:
            raise NotFound(alg, "Tag manifest algorithm not in use: " + str(alg))
        tags = dict(self._tags)
        del tags[alg]
        return self._evolve(tags=tags)

    # Fetch items

    def _with_fetch(self, fetch, **kw):
        if fetch:
            tags = _mark_pending(self._tags, FETCH_TXT)
        else:
            tags = _without_entry(self._tags, FETCH_TXT)
        return self._evolve(fetch=fetch, tags=tags, **kw)

    def add_fetch_item(self, url, path_in_data, length=None):
        """
        add a payload file that is retrieved from a URL rather than stored in
        the bag.  The file is retrieved once to calculate its digests.

        :param str url:  the http(s) URL of the file
        :param str path_in_data:  the file's destination, relative to the
                         payload directory
        :param int length:  the file's size in bytes; if None, the size of the
                         retrieved file is used.
        :raises FormatError:    if the URL does not use http or https
        :raises AlreadyExists:  if the destination is already in the bag as a
                                file or fetch item, or the URL is already listed
        :raises OutOfScope:     if the destination is outside of the payload
                                directory
        :raises BagIOError:     if the file cannot be retrieved
        """
        if not is_fetchable_url(url):
            raise FormatError("Fetch item URL must use http or https: " + url, url)
        path = self._payload_path(path_in_data)
        with self._open_fs() as bagfs:
            self._check_free(bagfs, path)
        # fail on a duplicate url before retrieving anything
        self._fetch.add(url, length, path)

        size, digests = materialize(self._fetcher, url, list(self._payload))
        if length is None:
            length = size
        elif int(length) != size:
            log.warning("Fetch item %s: given length (%s) differs from retrieved size (%d)",
                        url, length, size)
        fetch = self._fetch.add(url, length, path)

        payload = dict((a, t.add(path, digests[a])) for a, t in self._payload.items())
        return self._with_fetch(fetch, payload=payload)

    def _without_fetch_entry(self, entry, fetch):
        payload = dict((a, (t.remove(entry.path) if entry.path in t else t))
                       for a, t in self._payload.items())
        return self._with_fetch(fetch, payload=payload)

    def remove_fetch_item_by_path(self, path_in_data):
        """
        remove the fetch item with the given destination

        :raises NotFound:  if no fetch item has that destination
        """
        path = self._payload_path(path_in_data)
        entry = self._fetch.get_by_path(path)
        return self._without_fetch_entry(entry, self._fetch.remove_by_path(path))

    def remove_fetch_item_by_url(self, url):
        """
        remove the fetch item with the given URL

        :raises NotFound:  if no fetch item has that URL
        """
        entry = self._fetch.get_by_url(url)
        return self._without_fetch_entry(entry, self._fetch.remove_by_url(url))

    def remove_fetch_item(self, entry):
        """
        remove the given fetch item.  If the bag does not contain it, this
        model is returned as is.
        """
        if entry not in self._fetch:
            return self
        return self._without_fetch_entry(entry, self._fetch.remove_entry(entry))

    def replace_file_with_fetch_item(self, path_in_data, url):
        """
        turn a payload file into a fetch item that refers to the given URL.
        The file's digests are kept; the file itself is deleted on save.  The
        URL is not checked for availability.

        :raises NotFound:       if the file is not in the payload
        :raises IsDirectory:    if the path refers to a directory
        :raises AlreadyExists:  if the URL is already listed
        :raises FormatError:    if the URL does not use http or https
        """
        if not is_fetchable_url(url):
            raise FormatError("Fetch item URL must use http or https: " + url, url)
        path = self._payload_path(path_in_data)
        if path in self._fetch.paths():
            raise AlreadyExists(path, "Already present in bag as a fetch item: " + path)
        with self._open_fs() as bagfs:
            if self._is_dir(bagfs, path):
                raise IsDirectory(path)
            if not self._is_file(bagfs, path):
                raise NotFound(path)
            size = self._size(bagfs, path)
            ondisk = bagfs.isfile(path)

        fetch = self._fetch.add(url, size, path)
        added = OrderedDict(self._added)
        added.pop(path, None)
        removed = self._removed
        if ondisk:
            removed = removed | frozenset([path])
        return self._with_fetch(fetch, added=added, removed=removed)

    def replace_fetch_item_with_file(self, item):
        """
        retrieve a fetch item's file and store it in the payload in place of
        the fetch item.  The file is written on save.

        :param item:  the fetch item, given either as a FetchEntry, its URL, or
                      its destination relative to the payload directory
        :raises NotFound:        if the fetch item is not in the bag
        :raises DigestMismatch:  if the retrieved file does not match the
                                 digests in the payload manifests
        :raises BagIOError:      if the file cannot be retrieved
        """
        if isinstance(item, FetchEntry):
            entry = item if item in self._fetch else None
            if not entry:
                raise NotFound(item.path, "Not listed in fetch.txt: " + str(item.path))
        elif "://" in str(item):
            entry = self._fetch.get_by_url(item)
            if not entry:
                raise NotFound(item, "URL not listed in fetch.txt: " + str(item))
        else:
            path = self._payload_path(item)
            entry = self._fetch.get_by_path(path)
            if not entry:
                raise NotFound(path, "Not listed in fetch.txt: " + path)

        content = retrieve(self._fetcher, entry.url)
        for alg in sort_algorithms(self._payload):
            expected = self._payload[alg].get(entry.path)
            found = digest(content, alg)
            if expected is not None and expected != found:
                raise DigestMismatch(entry.path, alg, expected, found)

        added = OrderedDict(self._added)
        added[entry.path] = content
        return self._with_fetch(self._fetch.remove_entry(entry), added=added,
                                removed=self._removed - frozenset([entry.path]))

    # Metadata

    def with_bag_info(self, bag_info):
        """
        return a model with its bag-info metadata replaced
        """
        return self._evolve(bag_info=BagInfo.from_mapping(bag_info))

    def add_bag_info(self, key, value):
        return self._evolve(bag_info=self._bag_info.add(key, value))

    def remove_bag_info(self, key):
        return self._evolve(bag_info=self._bag_info.remove(key))

    def with_created(self, when=None):
        """
        set the bag's creation time (default: now)
        """
        return self._evolve(bag_info=self._bag_info.with_created(when))

    def without_created(self):
        return self._evolve(bag_info=self._bag_info.without_created())

    def with_is_version_of(self, bagid):
        """
        mark this bag as a new version of the bag with the given UUID
        """
        return self._evolve(bag_info=self._bag_info.with_is_version_of(bagid))

    def without_is_version_of(self):
        return self._evolve(bag_info=self._bag_info.without_is_version_of())

    def with_easy_user_account(self, user):
        return self._evolve(bag_info=self._bag_info.with_easy_user_account(user))

    def without_easy_user_account(self):
        return self._evolve(bag_info=self._bag_info.without_easy_user_account())

    def with_version(self, version):
        """
        set the BagIt version declared in bagit.txt (rewritten on save)

        :raises FormatError:  if the version is not supported (0.96 through 1.x)
        """
        version = Version(version)
        if version < "0.96" or version.major >= 2 or min(version.fields) < 0:
            raise FormatError("Unsupported BagIt version: " + str(version), str(version))
        return self._evolve(version=version)

    def with_encoding(self, encoding):
        """
        set the encoding for the tag files (they are rewritten on save)

        :raises FormatError:  if the encoding is not known
        """
        try:
            codecs.lookup(encoding)
        except LookupError:
            raise FormatError("Unknown encoding: " + str(encoding), encoding)
        return self._evolve(encoding=encoding)

    def with_fetcher(self, fetcher):
        """
        return a model that retrieves fetch items with the given fetcher
        """
        return self._evolve(fetcher=fetcher)

    # Persistence and validation

    def save(self):
        """
        write the model to the bag's directory and return the saved model (with
        no pending changes and up-to-date tag manifests).

        :raises InvariantViolation:  if the model has no payload manifest
                                     algorithm; nothing is written.
        :raises BagIOError:  if writing fails; the bag on disk may be left
                             inconsistent and should be re-read.
        """
        return PersistenceEngine(self).save()

    def _saved(self, bag_info, tag_manifests):
        return self._evolve(bag_info=bag_info, tags=dict(tag_manifests),
                            added=OrderedDict(), removed=frozenset())

    def is_complete(self):
        """
        return True if the bag, as last saved, is complete:  every file listed
        in its manifests is present (fetch items not yet retrieved count as
        missing) and no unlisted payload files are present.
        """
        from .validate import BagValidator
        with BagValidator(self._base_dir) as validator:
            return validator.is_complete()

    def is_valid(self):
        """
        return True if the bag, as last saved, is complete and all of its files
        match their manifest digests.
        """
        from .validate import BagValidator
        with BagValidator(self._base_dir) as validator:
            return validator.is_valid()

def _mark_pending(tables, path):
    # list path in every table with a digest that is calculated on save
    out = {}
    for alg, table in tables.items():
        if path in table:
            out[alg] = table.recompute(path, UNKNOWN_DIGEST)
        else:
            out[alg] = table.add(path, UNKNOWN_DIGEST)
    return out

def _without_entry(tables, path):
    return dict((a, (t.remove(path) if path in t else t)) for a, t in tables.items())

def _source_items(src, dest):
    # return (destination, content) pairs; a local file's bytes are read now so
    # that the digests and the bytes written on save agree
    if isinstance(src, (bytes, bytearray)):
        return [(dest, bytes(src))]
    if hasattr(src, 'read'):
        data = src.read()
        if not isinstance(data, bytes):
            raise TypeError("File object must be opened in binary mode")
        return [(dest, data)]

    srcpath = os.path.abspath(os.fspath(src))
    if not os.path.exists(srcpath):
        raise NotFound(srcpath, "Source file not found: " + srcpath)
    try:
        if not os.path.isdir(srcpath):
            parent, name = os.path.split(srcpath)
            with fs.osfs.OSFS(parent) as srcfs:
                return [(dest, srcfs.readbytes(name))]

        with fs.osfs.OSFS(srcpath) as srcfs:
            return [(dest + f, srcfs.readbytes(f)) for f in sorted(srcfs.walk.files())]
    except fs.errors.FSError as ex:
        raise BagIOError("Unable to read " + srcpath, srcpath, ex)

def _digest_source(content, algorithms):
    return calculate_digests(io.BytesIO(content), algorithms)
