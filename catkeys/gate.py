#! /usr/bin/env python
# vim: expandtab shiftwidth=4 softtabstop=4 tabstop=17 filetype=python :
"""Mutual TLS admission of incoming connections.

Every connection walks Handshaking -> ChainVerified -> (ExistenceChecked ->)
Accepted, or ends up rejected with one of the Outcome values. The chain is
verified by OpenSSL against the key directory's CA. The existence check is a
separate, pluggable step: a client whose key record was removed from the key
directory is refused even though its certificate still verifies.
"""

import concurrent.futures
import enum
import logging
import select
import threading
import time

from OpenSSL import SSL, crypto

from .authority import CLIENT, SERVER, common_name, has_usage
from .keystore import KeyStore

logger = logging.getLogger(__name__)

HANDSHAKE_TIMEOUT = 30.0
CHECK_TIMEOUT = 5.0


class Outcome(enum.Enum):
    ACCEPTED = "accepted"
    UNTRUSTED_PEER = "untrusted peer"
    REVOKED_OR_UNKNOWN_PEER = "revoked or unknown peer"
    TIMEOUT = "timeout"
    ABORTED = "aborted"


class Admission(object):
    """Result of Gate.admit. `connection` is only set when accepted."""

    def __init__(self, outcome, common_name=None, connection=None,
                 reason=None):
        self.outcome = outcome
        self.common_name = common_name
        self.connection = connection
        self.reason = reason

    @property
    def accepted(self):
        return self.outcome is Outcome.ACCEPTED

    def __repr__(self):
        return ("<{0.__class__.__name__} {0.outcome.value} "
                "CN={0.common_name!r}>").format(self)


class KeyExistenceCheck(object):
    """Revocation by file presence: the peer is trusted only while a client
    key record with its common name is in the key directory"""

    def __init__(self, store):
        self.store = store

    def __call__(self, cert):
        name = common_name(cert)
        return name is not None and self.store.exists(CLIENT, name)


def _keep_verdict(conn, cert, errnum, depth, ok):
    return bool(ok)


def _record_verdict(conn, cert, errnum, depth, ok):
    if not ok:
        state = conn.get_app_data()
        if state is not None:
            state.setdefault("verify_error",
                             (errnum, depth,
                              common_name(cert.to_cryptography())))
    return bool(ok)


def _context(method, record, verify_mode, callback):
    ctx = SSL.Context(method)
    ctx.set_min_proto_version(SSL.TLS1_2_VERSION)
    ctx.use_certificate(record.cert)
    ctx.use_privatekey(record.key)
    ctx.check_privatekey()
    # The key directory's CA is the only trust anchor
    ctx.get_cert_store().add_cert(crypto.X509.from_cryptography(record.ca_cert))
    ctx.set_verify(verify_mode, callback)
    return ctx


def _store(keydir):
    return keydir if isinstance(keydir, KeyStore) else KeyStore(keydir)


def server_context(keydir, server_name):
    record = _store(keydir).read(SERVER, server_name)
    ctx = _context(SSL.TLS_SERVER_METHOD, record,
                   SSL.VERIFY_PEER | SSL.VERIFY_FAIL_IF_NO_PEER_CERT,
                   _record_verdict)
    ctx.add_client_ca(crypto.X509.from_cryptography(record.ca_cert))
    return ctx


def client_context(keydir, client_name):
    """Context for connecting to a Gate with the client key client_name"""
    record = _store(keydir).read(CLIENT, client_name)
    return _context(SSL.TLS_CLIENT_METHOD, record, SSL.VERIFY_PEER,
                    _keep_verdict)


def _hung_up(err):
    """True if the TLS error only says the peer went away"""
    if isinstance(err, (SSL.ZeroReturnError, SSL.SysCallError)):
        return True
    return "unexpected eof" in str(err).lower()


def _handshake(conn, sock, timeout):
    deadline = time.monotonic() + timeout
    sock.setblocking(False)
    try:
        while True:
            try:
                conn.do_handshake()
                return
            except SSL.WantReadError:
                readers, writers = [sock], []
            except SSL.WantWriteError:
                readers, writers = [], [sock]
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError("TLS handshake timed out")
            readable, writable, _ = select.select(readers, writers, [],
                                                  remaining)
            if not (readable or writable):
                raise TimeoutError("TLS handshake timed out")
    finally:
        sock.setblocking(True)


class Gate(object):
    """Admits connections whose client certificate was issued by the CA of
    the key directory and, with check_key_exists, whose key record is still
    present. `revocation_check` replaces the existence check with any
    callable taking the peer certificate."""

    def __init__(self, keydir, server_name="server", check_key_exists=False,
                 revocation_check=None, handshake_timeout=HANDSHAKE_TIMEOUT,
                 check_timeout=CHECK_TIMEOUT):
        self.store = _store(keydir)
        self.server_name = server_name
        self.context = server_context(self.store, server_name)
        if revocation_check is None and check_key_exists:
            revocation_check = KeyExistenceCheck(self.store)
        self.revocation_check = revocation_check
        self.handshake_timeout = handshake_timeout
        self.check_timeout = check_timeout

    def _check(self, cert):
        """Runs the revocation check on a thread of its own, so a check
        that never returns only costs that one thread"""
        future = concurrent.futures.Future()

        def run():
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(self.revocation_check(cert))
            except Exception as err:
                future.set_exception(err)

        thread = threading.Thread(target=run, name="catkeys-check",
                                  daemon=True)
        thread.start()
        return future

    def _reject(self, outcome, address, reason, name=None):
        logger.warning("Rejected %s (CN=%r): %s: %s",
                       address, name, outcome.value, reason)
        return Admission(outcome, name, reason=reason)

    def admit(self, sock, address=None):
        """Run the TLS handshake and checks on a connected socket.
        The socket stays owned by the caller; it is not closed on
        rejection."""
        state = {}
        conn = SSL.Connection(self.context, sock)
        conn.set_app_data(state)
        conn.set_accept_state()

        # Handshaking
        try:
            _handshake(conn, sock, self.handshake_timeout)
        except TimeoutError as err:
            return self._reject(Outcome.TIMEOUT, address, err)
        except SSL.Error as err:
            if "verify_error" in state:
                errnum, depth, subject = state["verify_error"]
                return self._reject(
                    Outcome.UNTRUSTED_PEER, address,
                    "verify error {} at depth {}".format(errnum, depth),
                    subject)
            if _hung_up(err):
                return self._reject(Outcome.ABORTED, address, err)
            return self._reject(Outcome.UNTRUSTED_PEER, address, err)

        # ChainVerified
        cert = conn.get_peer_certificate(as_cryptography=True)
        if cert is None:
            return self._reject(Outcome.UNTRUSTED_PEER, address,
                                "no client certificate")
        name = common_name(cert)
        if not has_usage(cert, CLIENT):
            return self._reject(Outcome.UNTRUSTED_PEER, address,
                                "certificate lacks clientAuth usage", name)

        # ExistenceChecked
        if self.revocation_check is not None:
            future = self._check(cert)
            try:
                present = future.result(timeout=self.check_timeout)
            except concurrent.futures.TimeoutError:
                return self._reject(Outcome.TIMEOUT, address,
                                    "revocation check timed out", name)
            except Exception:
                logger.exception("Revocation check failed for %r", name)
                present = False
            if not present:
                return self._reject(Outcome.REVOKED_OR_UNKNOWN_PEER, address,
                                    "no key record", name)

        state["common_name"] = name
        logger.debug("Accepted %s (CN=%r)", address, name)
        return Admission(Outcome.ACCEPTED, name, connection=conn)
