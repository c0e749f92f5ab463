from unittest import TestLoader, TestSuite

def additional_tests():
    from . import (test_constants, test_checksum, test_manifest, test_baginfo,
                   test_fetch, test_bag, test_persist, test_validate)

    suites = [TestLoader().loadTestsFromModule(m)
              for m in (test_constants, test_checksum, test_manifest, test_baginfo,
                        test_fetch, test_bag, test_persist, test_validate)]
    return TestSuite(suites)
