#! /usr/bin/env python
# vim: expandtab shiftwidth=4 softtabstop=4 tabstop=17 filetype=python :
import shutil
import tempfile
import unittest

from catkeys import issuer
from catkeys.keystore import KeyStore

from . import fixtures


class KeyDirTestCase(unittest.TestCase):
    """Every test gets its own, empty key directory"""

    def setUp(self):
        super(KeyDirTestCase, self).setUp()
        self.keydir = tempfile.mkdtemp(prefix="catkeys-test-")
        self.addCleanup(shutil.rmtree, self.keydir, ignore_errors=True)
        self.store = KeyStore(self.keydir)

    def create_key(self, common_name, server=False, keydir=None):
        return issuer.create_key(keydir or self.keydir, common_name,
                                 server=server,
                                 ca_bits=fixtures.CA_BITS,
                                 bits=fixtures.LEAF_BITS)

    def make_keydir(self):
        """An additional key directory, with a CA of its own once used"""
        keydir = tempfile.mkdtemp(prefix="catkeys-other-")
        self.addCleanup(shutil.rmtree, keydir, ignore_errors=True)
        return keydir
