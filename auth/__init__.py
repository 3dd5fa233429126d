"""auth/ -- Account and credential lifecycle for localauth.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/ or core/; api/ and main.py inject configuration
when they build the store, hasher and token issuer.
"""
