#! /usr/bin/env python
# vim: expandtab shiftwidth=4 softtabstop=4 tabstop=17 filetype=python :
"""Threaded TCP and WSGI servers that only hand authenticated connections to
their request handlers."""

import io
import logging
import socketserver
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer

from OpenSSL import SSL

from .gate import CHECK_TIMEOUT, HANDSHAKE_TIMEOUT, Gate

logger = logging.getLogger(__name__)


def _peer_common_name(connection):
    state = connection.get_app_data() or {}
    return state.get("common_name")


class SSLConnectionIO(io.RawIOBase):
    """File-like view of an established OpenSSL.SSL.Connection.
    A clean TLS close or a dropped peer both read as end of stream."""

    def __init__(self, connection):
        super().__init__()
        self.connection = connection

    def readable(self):
        return True

    def writable(self):
        return True

    def readinto(self, buffer):
        try:
            return self.connection.recv_into(buffer)
        except SSL.ZeroReturnError:
            return 0
        except SSL.SysCallError as err:
            if err.args and err.args[0] == -1:  # unexpected EOF
                return 0
            raise

    def write(self, data):
        data = bytes(data)
        self.connection.sendall(data)
        return len(data)


class ConnectionHandler(socketserver.BaseRequestHandler):
    """Base handler for AuthenticatedServer. `request` is the TLS connection,
    `peer_common_name` the verified client identity, `rfile` and `wfile` are
    set up for stream style handlers."""

    rbufsize = io.DEFAULT_BUFFER_SIZE

    def setup(self):
        self.peer_common_name = _peer_common_name(self.request)
        raw = SSLConnectionIO(self.request)
        self.rfile = io.BufferedReader(raw, self.rbufsize)
        self.wfile = raw

    def finish(self):
        self.rfile.close()


class AuthenticatedServer(socketserver.ThreadingMixIn, socketserver.TCPServer):
    """A mutual TLS server over a catkeys key directory.

    Connections are admitted by a Gate on their own thread. A rejected
    connection is logged and closed; it never stops the server.
    """

    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, server_address, RequestHandlerClass, keydir,
                 server_name="server", check_key_exists=False,
                 revocation_check=None, handshake_timeout=HANDSHAKE_TIMEOUT,
                 check_timeout=CHECK_TIMEOUT, bind_and_activate=True):
        self.gate = Gate(keydir, server_name=server_name,
                         check_key_exists=check_key_exists,
                         revocation_check=revocation_check,
                         handshake_timeout=handshake_timeout,
                         check_timeout=check_timeout)
        super().__init__(server_address, RequestHandlerClass,
                         bind_and_activate)

    def on_admission(self, admission, client_address):
        """Hook called with every Admission, accepted or not"""

    def finish_request(self, request, client_address):
        admission = self.gate.admit(request, client_address)
        self.on_admission(admission, client_address)
        if not admission.accepted:
            return
        connection = admission.connection
        try:
            self.RequestHandlerClass(connection, client_address, self)
        finally:
            try:
                connection.shutdown()
            except SSL.Error as err:
                logger.debug("TLS shutdown with %s failed: %s",
                             client_address, err)


class AuthenticatedWSGIRequestHandler(WSGIRequestHandler):
    rbufsize = io.DEFAULT_BUFFER_SIZE

    def setup(self):
        raw = SSLConnectionIO(self.request)
        self.connection = self.request
        self.peer_common_name = _peer_common_name(self.request)
        self.rfile = io.BufferedReader(raw, self.rbufsize)
        self.wfile = raw

    def finish(self):
        self.rfile.close()

    def get_environ(self):
        env = super().get_environ()
        env["HTTPS"] = "on"
        env["wsgi.url_scheme"] = "https"
        if self.peer_common_name is not None:
            env["SSL_CLIENT_S_DN_CN"] = self.peer_common_name
        return env

    def log_message(self, format, *args):
        logger.info("%s CN=%r %s", self.address_string(),
                    self.peer_common_name, format % args)


class AuthenticatedWSGIServer(AuthenticatedServer, WSGIServer):
    """HTTPS with client certificates for a WSGI application"""


def make_server(host, port, app, keydir,
                server_class=AuthenticatedWSGIServer,
                handler_class=AuthenticatedWSGIRequestHandler, **kwargs):
    """Create a new mutual TLS WSGI server listening on `host` and `port`
    for `app`. Keyword arguments are passed on to AuthenticatedServer."""
    server = server_class((host, port), handler_class, keydir, **kwargs)
    server.set_app(app)
    return server
