from unittest import TestLoader, TestSuite

def additional_tests():
    from . import test_mkdata

    return TestSuite([TestLoader().loadTestsFromModule(test_mkdata)])
