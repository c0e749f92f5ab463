"""
This module provides validation of saved bags against the BagIt specification.
The checks themselves are delegated to the LOC bagit module (via
bagmodel.access.bagit.ReadOnlyBag); this module collects their outcome into
ValidationResults.
"""
import logging

from .access.bagit import BagValidationError, BagError, open_bag

log = logging.getLogger(__name__)

ERROR = 1
WARN  = 2
ALL   = 3
issuetypes = [ ERROR, WARN ]

type_labels = { ERROR: "error", WARN: "warning" }

class ValidationIssue(object):
    """
    an object capturing the outcome of a validation test.  It contains
    attributes describing the type of issue, a label identifying the test,
    and a prose description of the requirement that was tested.
    """
    ERROR = ERROR
    WARN  = WARN

    def __init__(self, idlabel='', issuetype=ERROR, spec='', passed=True,
                 comments=None):
        if issuetype not in issuetypes:
            raise ValueError("ValidationIssue: not a recognized issue type: "+
                             str(issuetype))
        if isinstance(comments, str):
            comments = [ comments ]
        self.label = idlabel
        self.type = issuetype
        self.specification = spec
        self._passed = passed
        self._comm = [str(c) for c in (comments or [])]

    def add_comment(self, text):
        """
        attach a comment to this issue.  The comment typically provides some
        context-specific information about how a test failed (e.g. by
        naming the file with a bad digest)
        """
        self._comm.append(str(text))

    @property
    def comments(self):
        return tuple(self._comm)

    def passed(self):
        """
        return True if this test is marked as having passed.
        """
        return self._passed

    def failed(self):
        return not self.passed()

    @property
    def summary(self):
        """
        a one-line description of the issue that was tested.
        """
        status = (self.passed() and "PASSED") or type_labels[self.type].upper()
        out = "{0}: {1}".format(status, self.label)
        if self.specification:
            out += ": {0}".format(self.specification)
        return out

    @property
    def description(self):
        """
        the summary followed by the attached comments, one per line
        """
        out = self.summary
        if self._comm:
            out += "\n   "
            out += "\n   ".join(self._comm)
        return out

    def __str__(self):
        out = self.summary
        if self._comm and self._comm[0]:
            out += " ({0})".format(self._comm[0])
        return out

class ValidationResults(object):
    """
    a container for collecting results from validation tests
    """
    ERROR = ERROR
    WARN  = WARN
    ALL   = ALL

    def __init__(self, target, want=ALL):
        """
        initialize an empty set of results for a particular bag

        :param str  target:   a name indicating the bag that is the target
                              of these results
        :param int    want:   the desired types of tests--ERROR, WARN, or
                              ALL--to collect.  This controls the result of
                              ok().
        """
        self.target = target
        self.want = want
        self.results = { ERROR: [], WARN: [] }

    def applied(self, issuetype=ALL):
        """
        return a list of the validation tests that were applied of the
        requested types
        """
        out = []
        for t in issuetypes:
            if t & issuetype:
                out += self.results[t]
        return out

    def failed(self, issuetype=ALL):
        return [issue for issue in self.applied(issuetype) if issue.failed()]

    def count_failed(self, issuetype=ALL):
        return len(self.failed(issuetype))

    def passed(self, issuetype=ALL):
        return [issue for issue in self.applied(issuetype) if issue.passed()]

    def ok(self):
        """
        return True if none of the validation tests of the types specified by
        the constructor's want parameter failed.
        """
        return self.count_failed(self.want) == 0

    def add(self, issue):
        self.results[issue.type].append(issue)

class BagModelValidationError(BagValidationError):
    """
    An exception indicating that a bag is not compliant with the BagIt
    specification.  It carries along all of the result details as a
    ValidationResults instance ("results").
    """
    def __init__(self, results):
        self.results = results
        failed = results.failed()
        if len(failed) == 1:
            msg = failed[0].summary
            details = list(failed[0].comments)
        else:
            msg = "{0} validation errors detected".format(len(failed))
            details = [i.description for i in failed]
        super(BagModelValidationError, self).__init__(msg, details)

class BagValidator(object):
    """
    A validator that tests whether a given Bag (serialized or otherwise)
    complies with the BagIt specification.
    """

    def __init__(self, bagpath):
        """
        initialize the validator for the bag with a given path.

        :param str bagpath:  the target bag, either as a directory for an
                             unserialized bag or a file for a serialized one
        """
        self.target = bagpath
        self.bag = open_bag(bagpath)

    def close(self):
        """
        release the bag opened for validation
        """
        self.bag.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def _test(self, label, spec, completeness_only):
        issue = ValidationIssue(label, ERROR, spec)
        try:
            self.bag.validate(completeness_only=completeness_only)
        except BagValidationError as ex:
            issue._passed = False
            issue.add_comment(str(ex.message))
            for d in (ex.details or []):
                issue.add_comment(d)
        except BagError as ex:
            issue._passed = False
            issue.add_comment(str(ex))
        return issue

    def validate(self, want=ALL, results=None, completeness_only=False):
        """
        run the bagit checks, returning the results.

        :param int want:  the types of issues desired
        :param ValidationResults results:  a ValidationResults to add result
                          information to; if provided, this instance will
                          be the one returned by this method.
        :param bool completeness_only:  if True, only check that the files
                          listed in the manifests are present (and no others),
                          skipping the digest comparisons
        """
        if not results:
            results = ValidationResults(str(self.bag), want)

        if want & ERROR:
            if completeness_only:
                results.add(self._test("Complete", "Bag must list all and only "
                                       "the files it contains", True))
            else:
                results.add(self._test("Valid", "Bag must be a complete, "
                                       "compliant BagIt bag", False))
        if results.count_failed():
            log.info("%s: %s", self.target, results.failed()[0])
        return results

    def is_complete(self):
        return self.validate(ERROR, completeness_only=True).ok()

    def is_valid(self):
        return self.validate(ERROR).ok()

    def ensure_valid(self, want=ALL):
        """
        run the checks; if any fail, raise a BagModelValidationError.
        """
        results = self.validate(want)
        if not results.ok():
            raise BagModelValidationError(results)

def validate(bagpath, completeness_only=False):
    """
    validate the bag at the given path, returning a ValidationResults instance
    """
    with BagValidator(bagpath) as validator:
        return validator.validate(completeness_only=completeness_only)
