#! /usr/bin/env python
# vim: expandtab shiftwidth=4 softtabstop=4 tabstop=17 filetype=python :
import logging

from pyramid.response import Response
from pyramid.view import view_config

logger = logging.getLogger(__name__)


def peer_common_name(request):
    """The verified client common name, as set by the catkeys server"""
    return request.environ.get("SSL_CLIENT_S_DN_CN")


@view_config(route_name="echo")
def echo(request):
    """Answers with whatever the authenticated client sent"""
    body = request.body.decode("utf8", errors="replace")
    logger.debug("Echoing %d bytes to %r", len(request.body),
                 peer_common_name(request))
    return Response("Data received: {0}".format(body),
                    content_type="application/html",
                    charset="UTF-8")
