"""
Paywalled video storefront core.

Session authentication, multi-provider checkout and purchase confirmation
for a video catalog backed by a document store.
"""

__version__ = "1.0.0"
