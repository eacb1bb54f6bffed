#! /usr/bin/env python
# vim: expandtab shiftwidth=4 softtabstop=4 tabstop=17 filetype=python :
"""Creating client and server keys signed by the key directory's CA"""

import logging

from . import authority
from .authority import CLIENT, SERVER
from .errors import AlreadyExists
from .keystore import KeyRecord, KeyStore, check_common_name

logger = logging.getLogger(__name__)

DEFAULT_COMMON_NAMES = {CLIENT: "client", SERVER: "server"}


def role_for(server):
    return SERVER if server else CLIENT


def default_common_name(server, settings=None):
    """The common name used when none is given, from the
    catkeys.<role>.default_common_name setting"""
    role = role_for(server)
    settings = settings or {}
    setting = "catkeys.{}.default_common_name".format(role)
    return settings.get(setting) or DEFAULT_COMMON_NAMES[role]


def ensure_ca(store, bits=authority.CA_BITS):
    """Returns the CA of the key directory, creating it on first use.
    A CA with missing parts raises CryptoError rather than being replaced."""
    with store.lock():
        if store.has_ca():
            return store.read_ca()
        logger.info("No CA in %s, creating one", store.keydir)
        ca = authority.CertificateAuthority.create_root(bits=bits)
        store.write_ca(ca)
        return ca


def create_key(keydir, common_name, server=False,
               ca_bits=authority.CA_BITS, bits=authority.LEAF_BITS,
               days=authority.LEAF_DAYS):
    """Issue a new key for common_name in keydir.
    Not idempotent: a second call for the same name raises AlreadyExists
    and leaves the first record untouched."""
    store = keydir if isinstance(keydir, KeyStore) else KeyStore(keydir)
    role = role_for(server)
    check_common_name(common_name)

    ensure_ca(store, bits=ca_bits)
    if store.exists(role, common_name):
        raise AlreadyExists("A {} key named {!r} already exists".format(
            role, common_name))

    key = authority.generate_key(bits)

    with store.lock():
        # Re-read under the lock, another writer may have issued meanwhile
        ca = store.read_ca()
        if store.exists(role, common_name):
            raise AlreadyExists("A {} key named {!r} already exists".format(
                role, common_name))
        cert = ca.issue(role, common_name, key.public_key(), days=days)
        store.write_serial(ca)
        record = KeyRecord(role, common_name, key, cert, ca.cert)
        store.write(record)

    logger.info("Created %s key %r (serial %d) in %s",
                role, common_name, cert.serial_number, store.keydir)
    return record
