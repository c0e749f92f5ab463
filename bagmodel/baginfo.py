"""
The in-memory form of a bag's bag-info.txt file
"""
import io, re, uuid
from collections import OrderedDict
from datetime import datetime

from bagit import _parse_tags, BagValidationError

from .constants import CREATED_KEY, IS_VERSION_OF_KEY, EASY_USER_ACCOUNT_KEY
from .access.exceptions import FormatError

_URN_UUID_PFX = "urn:uuid:"

class BagInfo(object):
    """
    an immutable, ordered multimap of bag-info metadata.  A key may have any
    number of values; the order of the keys and of each key's values is kept
    as given.  The methods that change the metadata return a new BagInfo.
    """

    def __init__(self, items=None):
        """
        :param items:  the initial (key, value) pairs; a key may appear more
                       than once
        """
        self._data = OrderedDict()
        if items:
            for key, value in items:
                self._data[key] = self._data.get(key, ()) + (str(value),)

    def _with(self, data):
        out = BagInfo()
        out._data = data
        return out

    def add(self, key, value):
        """
        return a new BagInfo with a value appended to those of the given key
        """
        data = OrderedDict(self._data)
        data[key] = data.get(key, ()) + (str(value),)
        return self._with(data)

    def set(self, key, value):
        """
        return a new BagInfo in which the given key has a single value.  If the
        key already exists, it keeps its position.
        """
        data = OrderedDict(self._data)
        data[key] = (str(value),)
        return self._with(data)

    def remove(self, key):
        """
        return a new BagInfo without the given key.  Removing a key that is
        not present returns an equal BagInfo.
        """
        if key not in self._data:
            return self
        data = OrderedDict(self._data)
        del data[key]
        return self._with(data)

    def get(self, key):
        """
        return the values of the given key as a tuple; it is empty if the key
        is not set.
        """
        return self._data.get(key, ())

    def keys(self):
        return list(self._data.keys())

    def items(self):
        """
        return the (key, value) pairs in order, repeating a key for each of
        its values
        """
        return [(k, v) for k, vals in self._data.items() for v in vals]

    def as_dict(self):
        """
        return the metadata as a mapping of each key to the list of its values
        """
        return OrderedDict((k, list(v)) for k, v in self._data.items())

    def __contains__(self, key):
        return key in self._data

    def __len__(self):
        return len(self._data)

    def __iter__(self):
        return iter(self._data)

    def __eq__(self, other):
        if not isinstance(other, BagInfo):
            return NotImplemented
        return self._data == other._data

    def __ne__(self, other):
        out = self.__eq__(other)
        if out is NotImplemented:
            return out
        return not out

    def __repr__(self):
        return "BagInfo({0!r})".format(self.items())

    def created(self):
        """
        return the bag's creation time (the Created value) as a datetime, or
        None if it is not set.

        :raises FormatError:  if the value is not an ISO 8601 date-time
        """
        vals = self.get(CREATED_KEY)
        if not vals:
            return None
        try:
            return datetime.fromisoformat(vals[0])
        except ValueError:
            raise FormatError("{0} value is not an ISO 8601 date-time: {1}"
                              .format(CREATED_KEY, vals[0]), CREATED_KEY)

    def with_created(self, when=None):
        """
        return a new BagInfo with the Created value set to the given time,
        formatted with milliseconds and a UTC offset.

        :param datetime when:  the time to set; if None, the current local
                               time is used.  A naive time is assumed to be
                               local.
        """
        if when is None:
            when = datetime.now()
        if when.tzinfo is None:
            when = when.astimezone()
        return self.set(CREATED_KEY, when.isoformat(timespec='milliseconds'))

    def without_created(self):
        return self.remove(CREATED_KEY)

    def is_version_of(self):
        """
        return the UUID of the bag this bag is a new version of (from the
        Is-Version-Of value) or None if it is not set.

        :raises FormatError:  if the value is not a urn:uuid URI
        """
        vals = self.get(IS_VERSION_OF_KEY)
        if not vals:
            return None
        val = vals[0]
        if not val.startswith(_URN_UUID_PFX):
            raise FormatError("{0} value is not a urn:uuid URI: {1}"
                              .format(IS_VERSION_OF_KEY, val), IS_VERSION_OF_KEY)
        try:
            return uuid.UUID(val[len(_URN_UUID_PFX):])
        except ValueError:
            raise FormatError("{0} value does not contain a valid UUID: {1}"
                              .format(IS_VERSION_OF_KEY, val), IS_VERSION_OF_KEY)

    def with_is_version_of(self, bagid):
        """
        return a new BagInfo that marks the bag as a new version of the bag
        with the given UUID

        :param bagid:  the UUID, either as a uuid.UUID or a string
        """
        if not isinstance(bagid, uuid.UUID):
            try:
                bagid = uuid.UUID(str(bagid))
            except ValueError:
                raise FormatError("Not a valid UUID: " + str(bagid), IS_VERSION_OF_KEY)
        return self.set(IS_VERSION_OF_KEY, _URN_UUID_PFX + str(bagid))

    def without_is_version_of(self):
        return self.remove(IS_VERSION_OF_KEY)

    def easy_user_account(self):
        """
        return the depositor's account name or None if it is not set

        :raises FormatError:  if more than one account is set
        """
        vals = self.get(EASY_USER_ACCOUNT_KEY)
        if not vals:
            return None
        if len(vals) > 1:
            raise FormatError("Only one {0} value is allowed; found {1}"
                              .format(EASY_USER_ACCOUNT_KEY, len(vals)),
                              EASY_USER_ACCOUNT_KEY)
        return vals[0]

    def with_easy_user_account(self, user):
        return self.set(EASY_USER_ACCOUNT_KEY, user)

    def without_easy_user_account(self):
        return self.remove(EASY_USER_ACCOUNT_KEY)

    def format(self):
        """
        return the contents of a bag-info.txt file holding this metadata.
        Line breaks within values are dropped.
        """
        return "".join("{0}: {1}\n".format(k, re.sub(r"\r\n|\r|\n", "", v))
                       for k, v in self.items())

    @classmethod
    def parse(cls, lines, name="bag-info.txt"):
        """
        read metadata from the contents of a bag-info.txt file.  Folded
        (continuation) lines are supported.

        :param lines:  the file contents as a str or an iterable of lines
        :param str name:  the file name to report errors against
        :raises FormatError:  if a line is not of the form "key: value"
        """
        if not isinstance(lines, str):
            lines = "".join(l if l.endswith("\n") else l+"\n" for l in lines)
        fd = io.StringIO(lines)
        fd.name = name
        try:
            return cls(_parse_tags(fd))
        except BagValidationError as ex:
            raise FormatError(str(ex), name)

    @classmethod
    def from_mapping(cls, info):
        """
        return a BagInfo for the given metadata

        :param info:  a BagInfo (returned as is), a mapping of keys to either a
                      single value or a list of values, a list of (key, value)
                      pairs, or None for empty metadata
        """
        if info is None:
            return cls()
        if isinstance(info, BagInfo):
            return info
        if hasattr(info, 'items'):
            items = []
            for key, vals in info.items():
                if not isinstance(vals, (list, tuple)):
                    vals = [vals]
                items.extend((key, v) for v in vals)
            return cls(items)
        return cls(info)
