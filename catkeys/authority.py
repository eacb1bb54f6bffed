#! /usr/bin/env python
# vim: expandtab shiftwidth=4 softtabstop=4 tabstop=17 filetype=python :
"""The private certificate authority: root creation and leaf issuance."""

import datetime

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID
from dateutil.relativedelta import relativedelta

from .errors import CryptoError

CLIENT = "client"
SERVER = "server"
ROLES = (CLIENT, SERVER)

PUBLIC_EXPONENT = 65537
CA_BITS = 4096
LEAF_BITS = 2048
# Bit strength => hash strength.
HASH = {2048: hashes.SHA256,
        3072: hashes.SHA384,
        4096: hashes.SHA512}

CA_YEARS = 20
LEAF_DAYS = 825
# Allowance for peers with a clock slightly behind ours
BACKDATE = datetime.timedelta(minutes=5)

CA_COMMON_NAME = "catkeys Signing Certificate"
ORGANIZATION = "catkeys"

USAGES = {CLIENT: ExtendedKeyUsageOID.CLIENT_AUTH,
          SERVER: ExtendedKeyUsageOID.SERVER_AUTH}


def _now():
    return datetime.datetime.now(tz=datetime.timezone.utc)


def _hash_for(key):
    try:
        return HASH[key.key_size]()
    except KeyError:
        raise CryptoError("Unsupported key size: {}".format(key.key_size))


def generate_key(bits=LEAF_BITS):
    if bits not in HASH:
        raise CryptoError("Unsupported key size: {}".format(bits))
    try:
        return rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT,
                                        key_size=bits)
    except (ValueError, TypeError) as err:
        raise CryptoError("Key generation failed: {}".format(err))


def dump_key(key):
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def dump_cert(cert):
    return cert.public_bytes(serialization.Encoding.PEM)


def load_key(pem):
    try:
        return serialization.load_pem_private_key(pem, password=None)
    except (ValueError, TypeError) as err:
        raise CryptoError("Unparseable private key: {}".format(err))


def load_cert(pem):
    try:
        return x509.load_pem_x509_certificate(pem)
    except ValueError as err:
        raise CryptoError("Unparseable certificate: {}".format(err))


def public_bytes(key):
    return key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def key_matches(key, cert):
    """True if the private key belongs to the certificate"""
    return public_bytes(key.public_key()) == public_bytes(cert.public_key())


def common_name(cert):
    attrs = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    return attrs[0].value if attrs else None


def has_usage(cert, role):
    """Check the extended key usage of a leaf against a role"""
    try:
        ext = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage)
    except x509.ExtensionNotFound:
        return False
    return USAGES[role] in ext.value


def verify_certificate(cert, ca_cert, now=None):
    """Returns True if cert was signed by ca_cert and is currently valid"""
    if now is None:
        now = _now()
    try:
        cert.verify_directly_issued_by(ca_cert)
    except (ValueError, TypeError, InvalidSignature):
        return False
    return cert.not_valid_before_utc <= now <= cert.not_valid_after_utc


class CertificateAuthority(object):
    """The signing key, its self-signed certificate and the serial counter.
    `serial` is the number the next issued certificate will get."""

    def __init__(self, key, cert, serial=2):
        self.key = key
        self.cert = cert
        self.serial = serial

    @classmethod
    def create_root(cls, bits=CA_BITS, years=CA_YEARS):
        key = generate_key(bits)
        name = x509.Name([
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, ORGANIZATION),
            x509.NameAttribute(NameOID.COMMON_NAME, CA_COMMON_NAME),
        ])
        now = _now()
        ski = x509.SubjectKeyIdentifier.from_public_key(key.public_key())
        builder = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(1)
            .not_valid_before(now - BACKDATE)
            .not_valid_after(now + relativedelta(years=years))
            .add_extension(x509.BasicConstraints(ca=True, path_length=0),
                           critical=True)
            # no cRLSign, revocation is done by removing key records
            .add_extension(x509.KeyUsage(
                digital_signature=False, content_commitment=False,
                key_encipherment=False, data_encipherment=False,
                key_agreement=False, key_cert_sign=True, crl_sign=False,
                encipher_only=False, decipher_only=False), critical=True)
            .add_extension(ski, critical=False)
        )
        try:
            cert = builder.sign(key, _hash_for(key))
        except (ValueError, TypeError) as err:
            raise CryptoError("CA signing failed: {}".format(err))
        return cls(key, cert, serial=2)

    @property
    def pem(self):
        return dump_cert(self.cert)

    def issue(self, role, common_name, public_key, days=LEAF_DAYS):
        """Sign public_key for common_name with the usage of role.
        Consumes one serial number."""
        if role not in ROLES:
            raise CryptoError("Mismatched type: {!r}".format(role))
        if not isinstance(common_name, str) or not 1 <= len(common_name) <= 64:
            raise CryptoError("Common name must be 1 to 64 characters")
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise CryptoError("Expected an RSA public key")

        now = _now()
        if now + datetime.timedelta(days=days) > self.cert.not_valid_after_utc:
            raise CryptoError("Certificate would outlive its CA")

        serial = self.serial
        try:
            subject = x509.Name([
                x509.NameAttribute(NameOID.ORGANIZATION_NAME, ORGANIZATION),
                x509.NameAttribute(NameOID.COMMON_NAME, common_name),
            ])
            ca_ski = self.cert.extensions.get_extension_for_class(
                x509.SubjectKeyIdentifier).value
            builder = (
                x509.CertificateBuilder()
                .subject_name(subject)
                .issuer_name(self.cert.subject)
                .public_key(public_key)
                .serial_number(serial)
                .not_valid_before(now - BACKDATE)
                .not_valid_after(now + datetime.timedelta(days=days))
                .add_extension(x509.BasicConstraints(ca=False,
                                                     path_length=None),
                               critical=True)
                .add_extension(x509.KeyUsage(
                    digital_signature=True, content_commitment=False,
                    key_encipherment=True, data_encipherment=False,
                    key_agreement=False, key_cert_sign=False, crl_sign=False,
                    encipher_only=False, decipher_only=False), critical=True)
                .add_extension(x509.ExtendedKeyUsage([USAGES[role]]),
                               critical=True)
                .add_extension(
                    x509.SubjectKeyIdentifier.from_public_key(public_key),
                    critical=False)
                .add_extension(
                    x509.AuthorityKeyIdentifier
                    .from_issuer_subject_key_identifier(ca_ski),
                    critical=False)
            )
            if role == SERVER and common_name.isascii():
                builder = builder.add_extension(
                    x509.SubjectAlternativeName([x509.DNSName(common_name)]),
                    critical=False)
            cert = builder.sign(self.key, _hash_for(self.key))
        except (ValueError, TypeError, x509.ExtensionNotFound) as err:
            raise CryptoError("Signing failed: {}".format(err))
        self.serial = serial + 1
        return cert
