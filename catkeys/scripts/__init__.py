# vim: expandtab shiftwidth=4 softtabstop=4 tabstop=17 filetype=python :
"""Command line entry points of catkeys"""
