from setuptools import setup, find_packages

requires = [
    "pyramid",
    "cryptography >= 42",
    "pyOpenSSL >= 24.3.0",
    "python-dateutil",
    # Transient dependency from pyramid->webob,
    # should be fixed in a later release of webob
    "legacy-cgi; python_version >= '3.13'"
]

tests_require = [
    "pytest",
]

setup(
    name="catkeys",
    version="1.0.0",
    python_requires=">=3.8",
    description="catkeys",
    long_description="""
catkeys manages a small private certificate authority in a directory next to
your project, and issues client and server keys signed by it.

Servers built on catkeys only talk to clients that present a certificate
issued from the same key directory. Optionally they also check that the
client's key is still present in the key directory, which makes revoking a
client as simple as deleting its key: no CRL or OCSP infrastructure needed.
      """,
    classifiers=[
        "Programming Language :: Python",
        "Framework :: Pyramid",
        "Topic :: Internet :: WWW/HTTP",
        "Topic :: Security :: Cryptography",
    ],
    keywords="certificates x509 ca cert ssl tls mtls client-authentication",
    packages=find_packages(exclude=["tests"]),
    include_package_data=True,
    zip_safe=False,
    test_suite="tests",
    install_requires=requires,
    extras_require={"testing": tests_require},
    entry_points="""\
      [paste.app_factory]
      main = catkeys:main
      [console_scripts]
      catkeys = catkeys.scripts.tool:main
      catkeys_serve = catkeys.scripts.serve:main
      """,
)
