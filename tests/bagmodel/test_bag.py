# encoding: utf-8
import os, pdb, io, uuid, logging
import tempfile, shutil
import unittest as test

from bagmodel.bag import BagModel, system_tag_files
from bagmodel.checksum import ChecksumAlgorithm, digest
from bagmodel.manifest import ManifestTable
from bagmodel.fetch import FetchEntry
from bagmodel.constants import UNKNOWN_DIGEST, Version, BagConfig
from bagmodel.testing.mkdata import StaticFetcher, mkpayload, file_content
from bagmodel.access.exceptions import (NotFound, AlreadyExists, OutOfScope,
                                        ProtectedPath, IsDirectory, FormatError,
                                        BagIOError, InvariantViolation, DigestMismatch)

logging.basicConfig(filename='test.log', level=logging.DEBUG)

# But we do want any exceptions raised in the logging path to be raised:
logging.raiseExceptions = True

SHA1 = ChecksumAlgorithm.SHA1
SHA256 = ChecksumAlgorithm.SHA256
SHA512 = ChecksumAlgorithm.SHA512
MD5 = ChecksumAlgorithm.MD5

URL1 = "https://example.org/files/a.txt"
URL2 = "https://example.org/files/b.txt"
CONTENT = { URL1: b"aaaaaaaaaa", URL2: b"b" * 20 }

def sha1(data):
    return digest(data, SHA1)

class BagTestBase(test.TestCase):

    def setUp(self):
        self.tempdir = tempfile.mkdtemp()
        self.bagdir = os.path.join(self.tempdir, "bag")
        self.fetcher = StaticFetcher(CONTENT)
        self.bag = BagModel.empty(self.bagdir, algorithms=["sha1"], fetcher=self.fetcher)

    def tearDown(self):
        shutil.rmtree(self.tempdir)

    def bagfile(self, path):
        return os.path.join(self.bagdir, *path.split('/'))

    def read_bagfile(self, path):
        with open(self.bagfile(path), 'rb') as fd:
            return fd.read()

class TestFactories(BagTestBase):

    def test_empty(self):
        bag = self.bag
        self.assertEqual(bag.base_dir, self.bagdir)
        self.assertEqual(bag.payload_dir, os.path.join(self.bagdir, "data"))
        self.assertEqual(bag.version, Version("0.97"))
        self.assertEqual(bag.encoding, "UTF-8")
        self.assertIs(bag.fetcher, self.fetcher)

        for name in ["bagit.txt", "bag-info.txt", "manifest-sha1.txt",
                     "tagmanifest-sha1.txt"]:
            self.assertTrue(os.path.isfile(self.bagfile(name)), name)
        self.assertTrue(os.path.isdir(self.bagfile("data")))
        self.assertEqual(os.listdir(self.bagfile("data")), [])

        self.assertEqual(bag.payload_manifest_algorithms, frozenset([SHA1]))
        self.assertEqual(bag.tag_manifest_algorithms, frozenset([SHA1]))
        self.assertEqual(len(bag.payload_manifests[SHA1]), 0)
        self.assertEqual(bag.fetch_items, [])
        self.assertEqual(bag.payload_files(), [])
        self.assertEqual(bag.tag_files(), [])
        self.assertFalse(bag.has_pending_changes())

        tags = bag.tag_manifests[SHA1]
        self.assertEqual(sorted(tags.paths()),
                         ["bag-info.txt", "bagit.txt", "manifest-sha1.txt"])
        for path, dig in tags.entries():
            self.assertEqual(dig, sha1(self.read_bagfile(path)))

        self.assertEqual(bag.bag_info.get("Payload-Oxum"), ("0.0",))
        self.assertEqual(len(bag.bag_info.get("Bagging-Date")), 1)

    def test_empty_with_config(self):
        bagdir = os.path.join(self.tempdir, "cfgbag")
        cfg = BagConfig([SHA256, MD5], {"Contact-Name": "Gurn Cranston"}, "1.0")
        bag = BagModel.empty(bagdir, config=cfg)
        self.assertEqual(bag.payload_manifest_algorithms, frozenset([SHA256, MD5]))
        self.assertEqual(bag.tag_manifest_algorithms, frozenset([SHA256, MD5]))
        self.assertEqual(bag.version, "1.0")
        self.assertEqual(bag.bag_info.keys(),
                         ["Contact-Name", "Payload-Oxum", "Bagging-Date"])
        with open(os.path.join(bagdir, "bagit.txt")) as fd:
            self.assertEqual(fd.read(),
                             "BagIt-Version: 1.0\nTag-File-Character-Encoding: UTF-8\n")
        self.assertEqual(sorted(bag.tag_manifests[MD5].paths()),
                         ["bag-info.txt", "bagit.txt", "manifest-md5.txt",
                          "manifest-sha256.txt"])

    def test_empty_fails(self):
        with self.assertRaises(AlreadyExists):
            BagModel.empty(self.bagdir)

        bagdir = os.path.join(self.tempdir, "noalgs")
        with self.assertRaises(InvariantViolation):
            BagModel.empty(bagdir, algorithms=[])
        self.assertFalse(os.path.exists(bagdir))

    def test_create_from_data(self):
        srcdir = os.path.join(self.tempdir, "dataset")
        mkpayload(srcdir, {"trial1.json": 70, "trial3/trial3a.json": 250, "data": 10})
        bag = BagModel.create_from_data(srcdir, algorithms=[SHA1, SHA256])

        self.assertEqual(bag.base_dir, srcdir)
        self.assertEqual(sorted(os.listdir(srcdir)),
                         ["bag-info.txt", "bagit.txt", "data", "manifest-sha1.txt",
                          "manifest-sha256.txt", "tagmanifest-sha1.txt",
                          "tagmanifest-sha256.txt"])
        self.assertEqual(bag.payload_files(),
                         ["data/data", "data/trial1.json", "data/trial3/trial3a.json"])
        self.assertEqual(bag.payload_manifests[SHA256]["data/trial1.json"],
                         digest(file_content(70), SHA256))
        self.assertEqual(bag.payload_manifests[SHA1]["data/data"],
                         sha1(file_content(10)))
        self.assertEqual(bag.bag_info.get("Payload-Oxum"), ("330.3",))

    def test_create_from_data_fails(self):
        with self.assertRaises(NotFound):
            BagModel.create_from_data(os.path.join(self.tempdir, "goober"))

    def test_read(self):
        bag = BagModel.read(self.bagdir, fetcher=self.fetcher)
        self.assertEqual(bag.payload_manifests, self.bag.payload_manifests)
        self.assertEqual(bag.tag_manifests, self.bag.tag_manifests)
        self.assertEqual(bag.bag_info, self.bag.bag_info)
        self.assertEqual(bag.version, "0.97")
        self.assertEqual(bag.encoding, "UTF-8")

    def test_read_fails(self):
        with self.assertRaises(NotFound):
            BagModel.read(os.path.join(self.tempdir, "goober"))

        notbag = os.path.join(self.tempdir, "notbag")
        os.mkdir(notbag)
        with self.assertRaises(FormatError):
            BagModel.read(notbag)

        with open(self.bagfile("manifest-sha384.txt"), 'w') as fd:
            fd.write("")
        with self.assertRaises(FormatError):
            BagModel.read(self.bagdir)

class TestPayloadFiles(BagTestBase):

    def test_add_bytes(self):
        bag = self.bag.add_payload_file(b"aaaaaaaaaa", "a.txt")
        self.assertEqual(bag.payload_manifests[SHA1].as_dict(),
                         {"data/a.txt": sha1(b"aaaaaaaaaa")})
        self.assertEqual(bag.payload_files(), ["data/a.txt"])
        self.assertEqual(bag.pending_additions, {"data/a.txt": b"aaaaaaaaaa"})
        self.assertTrue(bag.has_pending_changes())

        # nothing is written, and the original is untouched
        self.assertFalse(os.path.exists(self.bagfile("data/a.txt")))
        self.assertEqual(len(self.bag.payload_manifests[SHA1]), 0)
        self.assertEqual(self.bag.payload_files(), [])

    def test_add_fileobj(self):
        bag = self.bag.add_payload_file(io.BytesIO(b"hello world"), "sub/hello.txt")
        self.assertEqual(bag.payload_manifests[SHA1]["data/sub/hello.txt"],
                         "2aae6c35c94fcfb415dbe95f408b9ce91ee846ed")
        with self.assertRaises(TypeError):
            self.bag.add_payload_file(io.StringIO("hello world"), "hello.txt")

    def test_add_file_path(self):
        src = os.path.join(self.tempdir, "src.txt")
        with open(src, 'wb') as fd:
            fd.write(b"aaaaaaaaaa")
        bag = self.bag.add_payload_file(src, "a.txt")
        self.assertEqual(bag.payload_manifests[SHA1]["data/a.txt"], sha1(b"aaaaaaaaaa"))
        self.assertEqual(bag.pending_additions["data/a.txt"], b"aaaaaaaaaa")

        # the content is captured when added
        with open(src, 'wb') as fd:
            fd.write(b"bbbbbbbbbb")
        self.assertEqual(bag.pending_additions["data/a.txt"], b"aaaaaaaaaa")

        with self.assertRaises(NotFound):
            self.bag.add_payload_file(os.path.join(self.tempdir, "goob.txt"), "a.txt")

    def test_add_directory(self):
        srcdir = os.path.join(self.tempdir, "src")
        mkpayload(srcdir, {"x/y.txt": 50, "z.txt": 120})
        bag = self.bag.add_payload_file(srcdir, "sub")
        self.assertEqual(bag.payload_files(), ["data/sub/x/y.txt", "data/sub/z.txt"])
        self.assertEqual(bag.payload_manifests[SHA1]["data/sub/z.txt"],
                         sha1(file_content(120)))

        # a colliding child fails the whole addition
        bag = self.bag.add_payload_file(b"zzz", "sub/z.txt")
        with self.assertRaises(AlreadyExists) as ctx:
            bag.add_payload_file(srcdir, "sub")
        self.assertEqual(ctx.exception.path, "data/sub/z.txt")
        self.assertEqual(list(bag.payload_manifests[SHA1].paths()), ["data/sub/z.txt"])

    def test_add_out_of_scope(self):
        for dest in ["../a.txt", "sub/../../a.txt", "../../a.txt", "/etc/passwd", "", "."]:
            with self.assertRaises(OutOfScope, msg=dest):
                self.bag.add_payload_file(b"a", dest)

    def test_add_collisions(self):
        bag = self.bag.add_payload_file(b"aaaaaaaaaa", "a.txt")
        with self.assertRaises(AlreadyExists):
            bag.add_payload_file(b"bbb", "a.txt")
        with self.assertRaises(AlreadyExists):
            bag.add_payload_file(b"bbb", "a.txt/b.txt")
        with self.assertRaises(AlreadyExists):
            bag.add_payload_file(b"bbb", "./sub/../a.txt")

        bag = bag.add_payload_file(b"bbb", "sub/b.txt")
        with self.assertRaises(AlreadyExists):
            bag.add_payload_file(b"bbb", "sub")

        bag = bag.add_fetch_item(URL2, "f/b.txt")
        with self.assertRaises(AlreadyExists):
            bag.add_payload_file(b"bbb", "f/b.txt")

    def test_add_over_removed_directory(self):
        bag = self.bag.add_payload_file(b"x", "d/f.txt").save()
        with self.assertRaises(AlreadyExists):
            bag.add_payload_file(b"y", "d")

        bag = bag.remove_payload_file("d/f.txt")
        bag = bag.add_payload_file(b"y", "d")
        self.assertEqual(bag.payload_files(), ["data/d"])
        with self.assertRaises(NotFound):
            bag.remove_payload_file("d/f.txt")

        bag = bag.save()
        self.assertEqual(self.read_bagfile("data/d"), b"y")
        self.assertTrue(bag.is_valid())

    def test_remove_staged(self):
        bag = self.bag.add_payload_file(b"aaaaaaaaaa", "a.txt")
        bag = bag.remove_payload_file("a.txt")
        self.assertEqual(len(bag.payload_manifests[SHA1]), 0)
        self.assertFalse(bag.has_pending_changes())

    def test_remove_saved(self):
        bag = self.bag.add_payload_file(b"aaaaaaaaaa", "sub/a.txt").save()
        self.assertTrue(os.path.isfile(self.bagfile("data/sub/a.txt")))

        bag2 = bag.remove_payload_file("sub/a.txt")
        self.assertEqual(bag2.pending_removals, frozenset(["data/sub/a.txt"]))
        self.assertEqual(bag2.payload_files(), [])
        self.assertEqual(len(bag2.payload_manifests[SHA1]), 0)
        self.assertTrue(os.path.isfile(self.bagfile("data/sub/a.txt")))
        self.assertEqual(bag.payload_files(), ["data/sub/a.txt"])

    def test_remove_fails(self):
        bag = self.bag.add_payload_file(b"aaaaaaaaaa", "sub/a.txt")
        with self.assertRaises(NotFound):
            bag.remove_payload_file("b.txt")
        with self.assertRaises(IsDirectory):
            bag.remove_payload_file("sub")
        with self.assertRaises(OutOfScope):
            bag.remove_payload_file("../bagit.txt")

        bag = bag.add_fetch_item(URL1, "f/a.txt")
        with self.assertRaises(NotFound):
            bag.remove_payload_file("f/a.txt")

class TestTagFiles(BagTestBase):

    def test_add(self):
        bag = self.bag.add_tag_file(b"some notes", "metadata/notes.txt")
        self.assertEqual(bag.tag_manifests[SHA1]["metadata/notes.txt"], sha1(b"some notes"))
        self.assertEqual(bag.tag_files(), ["metadata/notes.txt"])
        self.assertEqual(len(bag.payload_manifests[SHA1]), 0)
        self.assertEqual(bag.payload_files(), [])

        with self.assertRaises(AlreadyExists):
            bag.add_tag_file(b"other notes", "metadata/notes.txt")

    def test_add_protected(self):
        for dest in ["bagit.txt", "bag-info.txt", "fetch.txt", "manifest-sha1.txt",
                     "manifest-md5.txt", "tagmanifest-sha1.txt", "./bagit.txt"]:
            with self.assertRaises(ProtectedPath, msg=dest):
                self.bag.add_tag_file(b"goob", dest)
            with self.assertRaises(ProtectedPath, msg=dest):
                self.bag.remove_tag_file(dest)

        # only at the bag's root
        bag = self.bag.add_tag_file(b"goob", "metadata/bagit.txt")
        self.assertIn("metadata/bagit.txt", bag.tag_manifests[SHA1])

    def test_add_out_of_scope(self):
        for dest in ["data", "data/notes.txt", "../notes.txt", "/tmp/notes.txt", ""]:
            with self.assertRaises(OutOfScope, msg=dest):
                self.bag.add_tag_file(b"goob", dest)

    def test_remove(self):
        bag = self.bag.add_tag_file(b"some notes", "metadata/notes.txt").save()
        bag = bag.remove_tag_file("metadata/notes.txt")
        self.assertNotIn("metadata/notes.txt", bag.tag_manifests[SHA1])
        self.assertEqual(bag.tag_files(), [])
        self.assertEqual(bag.pending_removals, frozenset(["metadata/notes.txt"]))

        with self.assertRaises(NotFound):
            bag.remove_tag_file("metadata/notes.txt")
        with self.assertRaises(IsDirectory):
            bag.remove_tag_file("metadata")
        with self.assertRaises(OutOfScope):
            bag.remove_tag_file("data/notes.txt")

class TestAlgorithms(BagTestBase):

    def setUp(self):
        super(TestAlgorithms, self).setUp()
        self.bag = self.bag.add_payload_file(b"aaaaaaaaaa", "a.txt") \
                           .add_tag_file(b"some notes", "notes.txt")

    def test_add_payload_algorithm(self):
        bag = self.bag.add_payload_manifest_algorithm(SHA256)
        self.assertEqual(bag.payload_manifest_algorithms, frozenset([SHA1, SHA256]))
        self.assertEqual(bag.payload_manifests[SHA256].as_dict(),
                         {"data/a.txt": digest(b"aaaaaaaaaa", SHA256)})
        self.assertEqual(bag.tag_manifests[SHA1]["manifest-sha256.txt"], UNKNOWN_DIGEST)
        self.assertEqual(self.bag.payload_manifest_algorithms, frozenset([SHA1]))

    def test_add_existing_payload_algorithm(self):
        bag = self.bag.add_payload_manifest_algorithm("SHA-1")
        self.assertIs(bag, self.bag)

        stale = self.bag._evolve(payload={SHA1: ManifestTable({"data/a.txt": "abcd"})})
        self.assertIs(stale.add_payload_manifest_algorithm(SHA1), stale)
        bag = stale.add_payload_manifest_algorithm(SHA1, force_recompute=True)
        self.assertEqual(bag.payload_manifests[SHA1]["data/a.txt"], sha1(b"aaaaaaaaaa"))
        self.assertEqual(bag.tag_manifests[SHA1]["manifest-sha1.txt"], UNKNOWN_DIGEST)

    def test_add_payload_algorithm_with_fetch(self):
        bag = self.bag.add_fetch_item(URL1, "f/a.txt")
        self.fetcher.requested = []
        bag = bag.add_payload_manifest_algorithm(SHA512)
        self.assertEqual(self.fetcher.requested, [URL1])
        self.assertEqual(bag.payload_manifests[SHA512]["data/f/a.txt"],
                         digest(CONTENT[URL1], SHA512))
        self.assertEqual(len(bag.payload_manifests[SHA512]), 2)

    def test_remove_payload_algorithm(self):
        bag = self.bag.add_payload_manifest_algorithm(SHA256)
        bag = bag.remove_payload_manifest_algorithm(SHA256)
        self.assertEqual(bag.payload_manifest_algorithms, frozenset([SHA1]))
        self.assertNotIn("manifest-sha256.txt", bag.tag_manifests[SHA1])

        with self.assertRaises(NotFound):
            bag.remove_payload_manifest_algorithm(MD5)

        # removing the last one is allowed in memory
        bag = bag.remove_payload_manifest_algorithm(SHA1)
        self.assertEqual(bag.payload_manifest_algorithms, frozenset())
        self.assertNotIn("manifest-sha1.txt", bag.tag_manifests[SHA1])

    def test_add_tag_algorithm(self):
        bag = self.bag.add_tag_manifest_algorithm(MD5)
        self.assertEqual(bag.tag_manifest_algorithms, frozenset([SHA1, MD5]))
        tags = bag.tag_manifests[MD5]
        self.assertEqual(sorted(tags.paths()),
                         ["bag-info.txt", "bagit.txt", "manifest-sha1.txt", "notes.txt"])
        self.assertEqual(tags["notes.txt"], digest(b"some notes", MD5))
        self.assertEqual(tags["bagit.txt"], UNKNOWN_DIGEST)
        self.assertEqual(bag.payload_manifests, self.bag.payload_manifests)

        self.assertIs(bag.add_tag_manifest_algorithm("md5"), bag)

    def test_remove_tag_algorithm(self):
        bag = self.bag.remove_tag_manifest_algorithm(SHA1)
        self.assertEqual(bag.tag_manifest_algorithms, frozenset())
        self.assertEqual(bag.payload_manifests, self.bag.payload_manifests)
        with self.assertRaises(NotFound):
            bag.remove_tag_manifest_algorithm(SHA1)

    def test_bad_algorithm(self):
        with self.assertRaises(FormatError):
            self.bag.add_payload_manifest_algorithm("crc32")

class TestFetchItems(BagTestBase):

    def test_add(self):
        bag = self.bag.add_fetch_item(URL1, "f/a.txt")
        self.assertEqual(bag.fetch_items, [FetchEntry(URL1, 10, "data/f/a.txt")])
        self.assertEqual(bag.payload_manifests[SHA1]["data/f/a.txt"], sha1(CONTENT[URL1]))
        self.assertEqual(bag.tag_manifests[SHA1]["fetch.txt"], UNKNOWN_DIGEST)
        self.assertEqual(bag.payload_files(), [])
        self.assertEqual(self.fetcher.requested, [URL1])
        self.assertEqual(self.bag.fetch_items, [])

    def test_add_with_length(self):
        bag = self.bag.add_fetch_item(URL1, "a.txt", 10)
        self.assertEqual(bag.fetch_items[0].length, 10)

        # a differing length is kept (and logged)
        bag = self.bag.add_fetch_item(URL1, "a.txt", 12)
        self.assertEqual(bag.fetch_items[0].length, 12)

    def test_add_fails(self):
        bag = self.bag.add_payload_file(b"aaaaaaaaaa", "a.txt").add_fetch_item(URL1, "f/a.txt")
        self.fetcher.requested = []

        with self.assertRaises(AlreadyExists):
            bag.add_fetch_item(URL2, "a.txt")
        with self.assertRaises(AlreadyExists):
            bag.add_fetch_item(URL2, "f/a.txt")
        with self.assertRaises(AlreadyExists):
            bag.add_fetch_item(URL1, "f/c.txt")
        self.assertEqual(self.fetcher.requested, [])
        self.assertEqual(len(bag.payload_manifests[SHA1]), 2)

        with self.assertRaises(OutOfScope):
            bag.add_fetch_item(URL2, "../b.txt")
        with self.assertRaises(FormatError):
            bag.add_fetch_item("ftp://example.org/b.txt", "b.txt")
        with self.assertRaises(BagIOError):
            bag.add_fetch_item("https://example.org/goober.txt", "goober.txt")

    def test_remove_by_path(self):
        bag = self.bag.add_fetch_item(URL1, "f/a.txt").add_fetch_item(URL2, "b.txt")
        bag = bag.remove_fetch_item_by_path("f/a.txt")
        self.assertEqual(bag.fetch_items, [FetchEntry(URL2, 20, "data/b.txt")])
        self.assertEqual(list(bag.payload_manifests[SHA1].paths()), ["data/b.txt"])
        self.assertIn("fetch.txt", bag.tag_manifests[SHA1])

        bag = bag.remove_fetch_item_by_path("b.txt")
        self.assertEqual(bag.fetch_items, [])
        self.assertEqual(len(bag.payload_manifests[SHA1]), 0)
        self.assertNotIn("fetch.txt", bag.tag_manifests[SHA1])

        with self.assertRaises(NotFound):
            bag.remove_fetch_item_by_path("b.txt")

    def test_remove_by_url(self):
        bag = self.bag.add_fetch_item(URL1, "f/a.txt")
        bag = bag.remove_fetch_item_by_url(URL1)
        self.assertEqual(bag.fetch_items, [])
        self.assertEqual(len(bag.payload_manifests[SHA1]), 0)
        with self.assertRaises(NotFound):
            bag.remove_fetch_item_by_url(URL1)

    def test_remove_entry(self):
        bag = self.bag.add_fetch_item(URL1, "f/a.txt")
        bag = bag.remove_fetch_item(FetchEntry(URL1, 10, "data/f/a.txt"))
        self.assertEqual(bag.fetch_items, [])
        self.assertEqual(len(bag.payload_manifests[SHA1]), 0)

        # an absent entry is silently ignored
        self.assertIs(bag.remove_fetch_item(FetchEntry(URL1, 10, "data/f/a.txt")), bag)

    def test_replace_file_with_fetch_item(self):
        bag = self.bag.add_payload_file(b"aaaaaaaaaa", "a.txt").save()
        bag = bag.replace_file_with_fetch_item("a.txt", URL1)
        self.assertEqual(bag.fetch_items, [FetchEntry(URL1, 10, "data/a.txt")])
        self.assertEqual(bag.payload_manifests[SHA1].as_dict(),
                         {"data/a.txt": sha1(b"aaaaaaaaaa")})
        self.assertEqual(bag.pending_removals, frozenset(["data/a.txt"]))
        self.assertEqual(bag.payload_files(), [])
        self.assertIn("fetch.txt", bag.tag_manifests[SHA1])

        with self.assertRaises(AlreadyExists):
            bag.replace_file_with_fetch_item("a.txt", URL2)
        with self.assertRaises(NotFound):
            bag.replace_file_with_fetch_item("b.txt", URL2)
        with self.assertRaises(FormatError):
            self.bag.replace_file_with_fetch_item("a.txt", "a.txt")

    def test_replace_fetch_item_with_file(self):
        bag = self.bag.add_fetch_item(URL1, "f/a.txt").add_fetch_item(URL2, "b.txt")

        bag1 = bag.replace_fetch_item_with_file("f/a.txt")
        self.assertEqual(bag1.fetch_items, [FetchEntry(URL2, 20, "data/b.txt")])
        self.assertEqual(bag1.payload_files(), ["data/f/a.txt"])
        self.assertEqual(bag1.pending_additions["data/f/a.txt"], CONTENT[URL1])
        self.assertEqual(bag1.payload_manifests, bag.payload_manifests)

        bag2 = bag1.replace_fetch_item_with_file(URL2)
        self.assertEqual(bag2.fetch_items, [])
        self.assertNotIn("fetch.txt", bag2.tag_manifests[SHA1])

        bag3 = bag.replace_fetch_item_with_file(FetchEntry(URL2, 20, "data/b.txt"))
        self.assertEqual(bag3.payload_files(), ["data/b.txt"])

        with self.assertRaises(NotFound):
            bag2.replace_fetch_item_with_file("f/a.txt")
        with self.assertRaises(NotFound):
            bag2.replace_fetch_item_with_file(URL2)
        with self.assertRaises(NotFound):
            bag2.replace_fetch_item_with_file(FetchEntry(URL2, 20, "data/b.txt"))

    def test_replace_fetch_item_mismatch(self):
        bag = self.bag.add_fetch_item(URL1, "a.txt")
        bag = bag.with_fetcher(StaticFetcher({URL1: b"changed!"}))
        with self.assertRaises(DigestMismatch) as ctx:
            bag.replace_fetch_item_with_file("a.txt")
        self.assertEqual(ctx.exception.path, "data/a.txt")
        self.assertEqual(ctx.exception.expected, sha1(CONTENT[URL1]))
        self.assertEqual(ctx.exception.found, sha1(b"changed!"))
        self.assertEqual(len(bag.fetch_items), 1)

class TestMetadata(BagTestBase):

    def test_bag_info(self):
        bag = self.bag.add_bag_info("Contact-Name", "Gurn Cranston") \
                      .add_bag_info("Contact-Name", "Gurn J. Cranston")
        self.assertEqual(bag.bag_info.get("Contact-Name"),
                         ("Gurn Cranston", "Gurn J. Cranston"))
        self.assertEqual(self.bag.bag_info.get("Contact-Name"), ())

        bag = bag.remove_bag_info("Contact-Name")
        self.assertEqual(bag.bag_info.get("Contact-Name"), ())

        bag = bag.with_bag_info({"Source-Organization": "NIST"})
        self.assertEqual(bag.bag_info.keys(), ["Source-Organization"])

    def test_typed_values(self):
        bagid = uuid.uuid4()
        bag = self.bag.with_created().with_is_version_of(bagid) \
                      .with_easy_user_account("gurn")
        self.assertIsNotNone(bag.created())
        self.assertEqual(bag.is_version_of(), bagid)
        self.assertEqual(bag.easy_user_account(), "gurn")

        bag = bag.without_created().without_is_version_of().without_easy_user_account()
        self.assertIsNone(bag.created())
        self.assertIsNone(bag.is_version_of())
        self.assertIsNone(bag.easy_user_account())

    def test_version_encoding(self):
        bag = self.bag.with_version("1.0").with_encoding("UTF-16")
        self.assertEqual(bag.version, Version("1.0"))
        self.assertEqual(bag.encoding, "UTF-16")
        self.assertEqual(self.bag.version, Version("0.97"))

        for vers in ["0.93", "2.0", "goober"]:
            with self.assertRaises(FormatError, msg=vers):
                self.bag.with_version(vers)
        with self.assertRaises(FormatError):
            self.bag.with_encoding("klingon")

class TestSystemTagFiles(test.TestCase):

    def test_system_tag_files(self):
        self.assertEqual(system_tag_files([SHA256, MD5]),
                         ["bagit.txt", "bag-info.txt", "manifest-md5.txt",
                          "manifest-sha256.txt"])
        self.assertEqual(system_tag_files([SHA1], True),
                         ["bagit.txt", "bag-info.txt", "manifest-sha1.txt", "fetch.txt"])


if __name__ == '__main__':
    test.main()
