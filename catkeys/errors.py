#! /usr/bin/env python
# vim: expandtab shiftwidth=4 softtabstop=4 tabstop=17 filetype=python :
"""catkeys.errors holds the exceptions raised by the key management core"""


class CatkeysError(Exception):
    pass


class KeyStoreError(CatkeysError, OSError):
    """The key directory could not be read or written"""


class CryptoError(CatkeysError):
    """Key or certificate generation or parsing failed"""


class AlreadyExists(CatkeysError):
    pass


class NotFound(CatkeysError):
    pass


class InvalidCommonName(CatkeysError, ValueError):
    pass
