#! /usr/bin/env python
# vim: expandtab shiftwidth=4 softtabstop=4 tabstop=17 filetype=python :
"""tests.test_authority holds the unittests for catkeys.authority"""
import datetime
import unittest

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID

from catkeys import authority
from catkeys.authority import CLIENT, SERVER, CertificateAuthority
from catkeys.errors import CryptoError

from . import fixtures


class TestCreateRoot(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        super(TestCreateRoot, cls).setUpClass()
        cls.ca = CertificateAuthority.create_root(bits=fixtures.CA_BITS)

    def test_is_a_ca(self):
        ext = self.ca.cert.extensions.get_extension_for_class(
            x509.BasicConstraints)
        self.assertTrue(ext.critical)
        self.assertTrue(ext.value.ca)

    def test_self_signed(self):
        self.assertEqual(self.ca.cert.subject, self.ca.cert.issuer)
        self.assertTrue(authority.verify_certificate(self.ca.cert,
                                                     self.ca.cert))

    def test_long_lived(self):
        cert = self.ca.cert
        lifetime = cert.not_valid_after_utc - cert.not_valid_before_utc
        self.assertGreater(lifetime, datetime.timedelta(days=19 * 365))

    def test_key_matches(self):
        self.assertTrue(authority.key_matches(self.ca.key, self.ca.cert))

    def test_unsupported_bits(self):
        with self.assertRaises(CryptoError):
            CertificateAuthority.create_root(bits=1000)


class TestIssue(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        super(TestIssue, cls).setUpClass()
        cls.ca = CertificateAuthority.create_root(bits=fixtures.CA_BITS)
        cls.other_ca = CertificateAuthority.create_root(
            bits=fixtures.CA_BITS)
        cls.key = authority.generate_key(fixtures.LEAF_BITS)

    def issue(self, role=CLIENT, common_name="alice", ca=None):
        ca = ca or self.ca
        return ca.issue(role, common_name, self.key.public_key())

    def test_subject_and_issuer(self):
        cert = self.issue(common_name="alice")
        self.assertEqual(authority.common_name(cert), "alice")
        self.assertEqual(cert.issuer, self.ca.cert.subject)

    def test_verifies_against_issuer_only(self):
        cert = self.issue()
        self.assertTrue(authority.verify_certificate(cert, self.ca.cert))
        self.assertFalse(authority.verify_certificate(cert,
                                                      self.other_ca.cert))

    def test_expired_does_not_verify(self):
        cert = self.issue()
        later = cert.not_valid_after_utc + datetime.timedelta(days=1)
        self.assertFalse(authority.verify_certificate(cert, self.ca.cert,
                                                      now=later))

    def test_client_usage(self):
        cert = self.issue(role=CLIENT)
        ext = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage)
        self.assertTrue(ext.critical)
        self.assertEqual(list(ext.value), [ExtendedKeyUsageOID.CLIENT_AUTH])
        self.assertTrue(authority.has_usage(cert, CLIENT))
        self.assertFalse(authority.has_usage(cert, SERVER))

    def test_server_usage(self):
        cert = self.issue(role=SERVER, common_name="localhost")
        self.assertTrue(authority.has_usage(cert, SERVER))
        self.assertFalse(authority.has_usage(cert, CLIENT))
        san = cert.extensions.get_extension_for_class(
            x509.SubjectAlternativeName)
        self.assertEqual(san.value.get_values_for_type(x509.DNSName),
                         ["localhost"])

    def test_not_a_ca(self):
        cert = self.issue()
        ext = cert.extensions.get_extension_for_class(x509.BasicConstraints)
        self.assertFalse(ext.value.ca)

    def test_shorter_than_root(self):
        cert = self.issue()
        self.assertLess(cert.not_valid_after_utc,
                        self.ca.cert.not_valid_after_utc)

    def test_serials_increase(self):
        first = self.issue(common_name="one")
        second = self.issue(common_name="two")
        self.assertGreater(second.serial_number, first.serial_number)
        self.assertEqual(self.ca.serial, second.serial_number + 1)

    def test_unknown_role(self):
        with self.assertRaises(CryptoError):
            self.issue(role="client-server")

    def test_malformed_inputs(self):
        serial = self.ca.serial
        with self.assertRaises(CryptoError):
            self.issue(common_name="")
        with self.assertRaises(CryptoError):
            self.issue(common_name="x" * 65)
        ec_key = ec.generate_private_key(ec.SECP256R1())
        with self.assertRaises(CryptoError):
            self.ca.issue(CLIENT, "ec", ec_key.public_key())
        # Failed attempts do not use up serial numbers
        self.assertEqual(self.ca.serial, serial)


class TestHelpers(unittest.TestCase):
    def test_load_garbage(self):
        with self.assertRaises(CryptoError):
            authority.load_cert(b"-----BEGIN CERTIFICATE-----\nnope\n")
        with self.assertRaises(CryptoError):
            authority.load_key(b"not a key")

    def test_self_signed_has_no_usage(self):
        forged = fixtures.SelfSigned("someone")
        self.assertEqual(authority.common_name(forged.cert), "someone")
        self.assertFalse(authority.has_usage(forged.cert, CLIENT))
