#! /usr/bin/env python
# vim: expandtab shiftwidth=4 softtabstop=4 tabstop=17 filetype=python :
"""catkeys.keystore owns the on-disk key directory.

Layout of a key directory::

    ca.key ca.crt ca.srl
    client/<common name>.key client/<common name>.crt
    server/<common name>.key server/<common name>.crt

All writes go to a temporary file in the destination directory which is then
renamed into place, so readers never see half a file. Readers take no locks.
"""

import contextlib
import fcntl
import logging
import os
import tempfile

from . import authority
from .authority import CLIENT, ROLES, SERVER  # noqa: F401
from .errors import (
    AlreadyExists,
    CryptoError,
    InvalidCommonName,
    KeyStoreError,
    NotFound,
)

logger = logging.getLogger(__name__)

MARKERS = ("catkeys", "cahkeys")  # cahkeys is the legacy name

CA_KEY = "ca.key"
CA_CERT = "ca.crt"
CA_SERIAL = "ca.srl"
LOCK = ".lock"
KEY_SUFFIX = ".key"
CERT_SUFFIX = ".crt"

MAX_COMMON_NAME = 64

KEY_MODE = 0o600
CERT_MODE = 0o644


def locate_keydir(start=None, markers=MARKERS):
    """Walks upwards from start (default cwd) and returns the first key
    directory found, raising NotFound at the filesystem root"""
    path = os.path.abspath(start or os.getcwd())
    while True:
        for marker in markers:
            candidate = os.path.join(path, marker)
            if os.path.isdir(candidate):
                return candidate
        parent = os.path.dirname(path)
        if parent == path:
            raise NotFound("No key directory ({}) found above {}".format(
                "/".join(markers), start or os.getcwd()))
        path = parent


def check_common_name(common_name):
    if not isinstance(common_name, str) or not common_name:
        raise InvalidCommonName("Common name must be a non-empty string")
    if len(common_name) > MAX_COMMON_NAME:
        raise InvalidCommonName(
            "Common name longer than {} characters".format(MAX_COMMON_NAME))
    if common_name in (".", "..") or common_name.startswith("."):
        raise InvalidCommonName(
            "Common name may not start with '.': {!r}".format(common_name))
    for char in ("/", "\\", "\0"):
        if char in common_name:
            raise InvalidCommonName(
                "Common name may not contain {!r}".format(char))
    return common_name


def _check_role(role):
    if role not in ROLES:
        raise ValueError("Unknown role: {!r}".format(role))
    return role


def _read(path):
    try:
        with open(path, "rb") as f:
            return f.read()
    except FileNotFoundError:
        raise NotFound(path)
    except OSError as err:
        raise KeyStoreError(err.errno, "Could not read {}: {}".format(
            path, err.strerror))


def _atomic_write(path, data, mode):
    dirname = os.path.dirname(path)
    try:
        os.makedirs(dirname, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=dirname, prefix=".tmp-")
    except OSError as err:
        raise KeyStoreError(err.errno, "Could not write in {}: {}".format(
            dirname, err.strerror))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except OSError as err:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp)
        raise KeyStoreError(err.errno, "Could not write {}: {}".format(
            path, err.strerror))


class KeyRecord(object):
    """An issued identity: private key and certificate bound to
    (role, common_name), plus the CA certificate that signed it"""

    def __init__(self, role, common_name, key, cert, ca_cert):
        self.role = _check_role(role)
        self.common_name = common_name
        self.key = key
        self.cert = cert
        self.ca_cert = ca_cert

    @property
    def key_pem(self):
        return authority.dump_key(self.key)

    @property
    def cert_pem(self):
        return authority.dump_cert(self.cert)

    @property
    def ca_pem(self):
        return authority.dump_cert(self.ca_cert)

    def __repr__(self):
        return "<{0.__class__.__name__} {0.role}/{0.common_name}>".format(self)


class KeyStore(object):
    def __init__(self, keydir):
        self.keydir = os.path.abspath(keydir)

    def __repr__(self):
        return "<{0.__class__.__name__} {0.keydir}>".format(self)

    def path(self, *parts):
        return os.path.join(self.keydir, *parts)

    def record_paths(self, role, common_name):
        """Returns (keyfile, certfile) for a record"""
        _check_role(role)
        check_common_name(common_name)
        return (self.path(role, common_name + KEY_SUFFIX),
                self.path(role, common_name + CERT_SUFFIX))

    @contextlib.contextmanager
    def lock(self):
        """Exclusive advisory lock for administrative writes.
        flock locks belong to the open file, so this also excludes other
        threads of the same process."""
        try:
            os.makedirs(self.keydir, exist_ok=True)
            fd = os.open(self.path(LOCK), os.O_RDWR | os.O_CREAT, 0o600)
        except OSError as err:
            raise KeyStoreError(err.errno, "Could not lock {}: {}".format(
                self.keydir, err.strerror))
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            yield self
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)

    # CA material

    def has_ca(self):
        """True once a CA was created here, even if parts of it went
        missing since. Such a CA must be repaired, never replaced."""
        return any(os.path.exists(self.path(name))
                   for name in (CA_KEY, CA_CERT, CA_SERIAL))

    def read_ca(self):
        if not self.has_ca():
            raise NotFound("No CA in {}".format(self.keydir))
        try:
            key_pem = _read(self.path(CA_KEY))
            cert_pem = _read(self.path(CA_CERT))
            serial_text = _read(self.path(CA_SERIAL))
        except NotFound as err:
            # Issued keys and serials depend on all three
            raise CryptoError("Incomplete CA in {}, missing {}".format(
                self.keydir, err))
        key = authority.load_key(key_pem)
        cert = authority.load_cert(cert_pem)
        if not authority.key_matches(key, cert):
            raise CryptoError("CA key does not match CA certificate")
        try:
            serial = int(serial_text.decode("ascii").strip(), 16)
        except ValueError:
            raise CryptoError("Corrupt serial file {}".format(
                self.path(CA_SERIAL)))
        return authority.CertificateAuthority(key, cert, serial)

    def read_ca_cert(self):
        """The public trust anchor only"""
        return authority.load_cert(_read(self.path(CA_CERT)))

    def write_serial(self, ca):
        data = "{:02X}\n".format(ca.serial).encode("ascii")
        _atomic_write(self.path(CA_SERIAL), data, CERT_MODE)

    def write_ca(self, ca):
        self.write_serial(ca)
        _atomic_write(self.path(CA_KEY), authority.dump_key(ca.key), KEY_MODE)
        _atomic_write(self.path(CA_CERT), ca.pem, CERT_MODE)

    # Issued records

    def read(self, role, common_name):
        keyfile, certfile = self.record_paths(role, common_name)
        key = authority.load_key(_read(keyfile))
        cert = authority.load_cert(_read(certfile))
        if not authority.key_matches(key, cert):
            raise CryptoError("Key and certificate of {}/{} do not match"
                              .format(role, common_name))
        return KeyRecord(role, common_name, key, cert, self.read_ca_cert())

    def exists(self, role, common_name):
        """True if a complete and well-formed record is present.
        Anything else, including unreadable files, counts as absent."""
        try:
            keyfile, certfile = self.record_paths(role, common_name)
            key = authority.load_key(_read(keyfile))
            cert = authority.load_cert(_read(certfile))
        except (InvalidCommonName, NotFound, KeyStoreError, CryptoError):
            return False
        return authority.key_matches(key, cert)

    def write(self, record, replace=False):
        if not replace and self.exists(record.role, record.common_name):
            raise AlreadyExists("A {} key named {!r} already exists".format(
                record.role, record.common_name))
        keyfile, certfile = self.record_paths(record.role,
                                              record.common_name)
        _atomic_write(keyfile, record.key_pem, KEY_MODE)
        _atomic_write(certfile, record.cert_pem, CERT_MODE)

    def delete(self, role, common_name):
        removed = False
        for path in self.record_paths(role, common_name):
            try:
                os.unlink(path)
                removed = True
            except FileNotFoundError:
                pass
            except OSError as err:
                raise KeyStoreError(err.errno, "Could not remove {}: {}"
                                    .format(path, err.strerror))
        if not removed:
            raise NotFound("No {} key named {!r}".format(role, common_name))

    def list(self, role):
        _check_role(role)
        try:
            names = os.listdir(self.path(role))
        except FileNotFoundError:
            return []
        except OSError as err:
            raise KeyStoreError(err.errno, "Could not list {}: {}".format(
                self.path(role), err.strerror))
        common_names = {name[:-len(CERT_SUFFIX)] for name in names
                        if name.endswith(CERT_SUFFIX)
                        and not name.startswith(".")}
        return sorted(cn for cn in common_names if self.exists(role, cn))
