"""Legacy wallet migration tool.

Moves custodial wallets out of the legacy PocketBase store into the D1
``users``/``wallets`` tables, re-encrypting each JWK with the worker's
AES-256-GCM scheme.
"""

__version__ = "0.3.0"
