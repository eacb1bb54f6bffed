#! /usr/bin/env python
# vim: expandtab shiftwidth=4 softtabstop=4 tabstop=17 filetype=python :
"""Helpers shared by the test cases: key sizes, TLS clients and contexts"""

import datetime
import socket
import threading

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import NameOID
from OpenSSL import SSL, crypto

from catkeys import authority

# Smaller than the production defaults, RSA 4096 is slow to generate
CA_BITS = 2048
LEAF_BITS = 2048

JOIN_TIMEOUT = 10


def context_for(record, verify=False):
    """A client context presenting record. The server is only verified when
    asked to, so tests can present certificates the server will refuse."""
    ctx = SSL.Context(SSL.TLS_CLIENT_METHOD)
    if record is not None:
        ctx.use_certificate(record.cert)
        ctx.use_privatekey(record.key)
    if verify:
        ctx.get_cert_store().add_cert(crypto.X509.from_cryptography(record.ca_cert))
        ctx.set_verify(SSL.VERIFY_PEER, lambda *args: bool(args[-1]))
    else:
        ctx.set_verify(SSL.VERIFY_NONE, lambda *args: True)
    return ctx


class SelfSigned(object):
    """Client identity nobody issued"""

    def __init__(self, common_name="forged_client"):
        self.key = authority.generate_key(LEAF_BITS)
        name = x509.Name([
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ])
        now = datetime.datetime.now(tz=datetime.timezone.utc)
        self.cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(self.key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(minutes=1))
            .not_valid_after(now + datetime.timedelta(days=1))
            .sign(self.key, hashes.SHA256())
        )
        self.ca_cert = self.cert


class Client(threading.Thread):
    """Runs the client side of a TLS connection on its own thread.
    Sends payload once connected and keeps everything it reads."""

    def __init__(self, ctx, sock, payload=None, read=False):
        super(Client, self).__init__(daemon=True)
        self.connection = SSL.Connection(ctx, sock)
        self.connection.set_connect_state()
        self.payload = payload
        self.read = read
        self.received = b""
        self.error = None
        self.handshake_done = False

    def run(self):
        try:
            self.connection.do_handshake()
            self.handshake_done = True
            if self.payload:
                self.connection.sendall(self.payload)
            while self.read:
                try:
                    data = self.connection.recv(4096)
                except (SSL.ZeroReturnError, SSL.SysCallError):
                    break
                if not data:
                    break
                self.received += data
        except SSL.Error as err:
            self.error = err


def socket_pair():
    return socket.socketpair()


def http_post(body, path="/"):
    return (
        "POST {} HTTP/1.0\r\n"
        "Host: localhost\r\n"
        "Content-Type: text/plain\r\n"
        "Content-Length: {}\r\n"
        "\r\n".format(path, len(body))
    ).encode("ascii") + body
