"""
This module writes a bag model to its directory.

Saving proceeds in phases:  the model's pending file additions and removals
are applied; the derived bag-info values (Payload-Oxum and Bagging-Date) are
recalculated and bagit.txt and bag-info.txt are written; the payload manifests
and fetch.txt are written; and finally the tag manifests are recalculated and
written until every digest they list matches the file it refers to.  Because
tag manifests never list tag manifests, the second pass of that last phase
never finds anything to change.  Files whose content would not change are not
rewritten.
"""
import logging
from datetime import date

import fs.osfs, fs.path, fs.errors

from .constants import (PAYLOAD_DIR, BAGIT_TXT, BAG_INFO_TXT, FETCH_TXT,
                        PAYLOAD_OXUM_KEY, BAGGING_DATE_KEY,
                        manifest_alg_name, tagmanifest_alg_name)
from .checksum import digest_file, sort_algorithms
from .access.exceptions import BagIOError, InvariantViolation

log = logging.getLogger(__name__)

class PersistenceEngine(object):
    """
    a class that saves a BagModel to the bag's directory
    """

    def __init__(self, model):
        """
        :param BagModel model:  the model to save
        """
        self.model = model
        self.written = []
        self.deleted = []
        self.recomputed = []

    def save(self):
        """
        write the model to its directory and return the saved model.  After a
        save, the attributes written and deleted list the bag-root-relative
        paths of the files that were written and deleted, and recomputed lists,
        per fixed-point pass, the number of tag manifest entries that changed.

        :raises InvariantViolation:  if the model has no payload manifest
                                     algorithm; nothing is written.
        :raises BagIOError:  if writing to the bag's directory fails
        """
        model = self.model
        if not model.payload_manifest_algorithms:
            raise InvariantViolation("Bag must contain at least one payload manifest",
                                     model.base_dir)

        log.info("Saving bag %s", model.base_dir)
        try:
            with fs.osfs.OSFS(model.base_dir) as bagfs:
                self._apply_staging(bagfs)
                bag_info = self._write_declarations(bagfs)
                self._write_leaf_manifests(bagfs)
                tag_manifests = self._write_tag_manifests(bagfs)
        except BagIOError:
            raise
        except (fs.errors.FSError, OSError) as ex:
            raise BagIOError("Failed to save bag {0}: {1}".format(model.base_dir, str(ex)),
                             model.base_dir, ex)

        log.info("Saved bag %s (%d files written, %d deleted)", model.base_dir,
                 len(self.written), len(self.deleted))
        return model._saved(bag_info, tag_manifests)

    def _write(self, bagfs, path, data):
        if bagfs.isfile(path) and bagfs.readbytes(path) == data:
            log.debug("%s is unchanged; not rewriting", path)
            return False
        parent = fs.path.dirname(path)
        if parent:
            bagfs.makedirs(parent, recreate=True)
        bagfs.writebytes(path, data)
        self.written.append(path)
        return True

    def _delete(self, bagfs, path):
        bagfs.remove(path)
        self.deleted.append(path)

        # prune the directories the removal leaves empty
        parent = fs.path.dirname(path)
        while parent and parent != PAYLOAD_DIR and bagfs.isempty(parent):
            bagfs.removedir(parent)
            log.debug("Removed empty directory %s", parent)
            parent = fs.path.dirname(parent)

    def _encode(self, text):
        return text.encode(self.model.encoding)

    def _apply_staging(self, bagfs):
        for path in sorted(self.model.pending_removals):
            if bagfs.isfile(path):
                self._delete(bagfs, path)

        for path, content in self.model.pending_additions.items():
            if bagfs.isdir(path):
                # left holding no files by the removals above
                bagfs.removetree(path)
                log.debug("Removed emptied directory %s", path)
            self._write(bagfs, path, content)

    def _write_declarations(self, bagfs):
        model = self.model
        size = 0
        count = 0
        if bagfs.isdir(PAYLOAD_DIR):
            for path in bagfs.walk.files(PAYLOAD_DIR):
                size += bagfs.getsize(path)
                count += 1

        bag_info = model.bag_info.set(PAYLOAD_OXUM_KEY, "{0}.{1}".format(size, count)) \
                                 .set(BAGGING_DATE_KEY, date.today().isoformat())

        declaration = "BagIt-Version: {0}\nTag-File-Character-Encoding: {1}\n" \
                      .format(model.version, model.encoding)
        self._write(bagfs, BAGIT_TXT, declaration.encode("utf-8"))
        self._write(bagfs, BAG_INFO_TXT, self._encode(bag_info.format()))
        return bag_info

    def _write_leaf_manifests(self, bagfs):
        model = self.model
        payload = model.payload_manifests
        for alg in sort_algorithms(payload):
            self._write(bagfs, alg.manifest_name, self._encode(payload[alg].format()))

        inuse = set(a.bagit_name for a in payload)
        for name in sorted(bagfs.listdir("/")):
            alg = manifest_alg_name(name)
            if alg and alg not in inuse and bagfs.isfile(name):
                self._delete(bagfs, name)

        if model.fetch:
            self._write(bagfs, FETCH_TXT, self._encode(model.fetch.format()))
        elif bagfs.isfile(FETCH_TXT):
            self._delete(bagfs, FETCH_TXT)

    def _write_tag_manifests(self, bagfs):
        tables = self.model.tag_manifests
        algs = sort_algorithms(tables)

        inuse = set(a.bagit_name for a in algs)
        for name in sorted(bagfs.listdir("/")):
            alg = tagmanifest_alg_name(name)
            if alg and alg not in inuse and bagfs.isfile(name):
                self._delete(bagfs, name)

        while True:
            changed = 0
            cache = {}
            for alg in algs:
                table = tables[alg]
                for path, stored in list(table.entries()):
                    if path not in cache:
                        if not bagfs.isfile(path):
                            raise BagIOError("Tag file listed in tag manifest is missing: "
                                             + path, path)
                        cache[path] = digest_file(bagfs, path, algs)
                    if cache[path][alg] != stored:
                        table = table.recompute(path, cache[path][alg])
                        changed += 1
                tables[alg] = table

            self.recomputed.append(changed)
            log.debug("Tag manifest pass %d: %d entries recomputed",
                      len(self.recomputed), changed)
            if not changed:
                break
            for alg in algs:
                self._write(bagfs, alg.tagmanifest_name, self._encode(tables[alg].format()))

        for alg in algs:
            # needed when the first pass had nothing to recompute
            self._write(bagfs, alg.tagmanifest_name, self._encode(tables[alg].format()))
        return tables
