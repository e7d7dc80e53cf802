"""
HTTP layer for the storefront.

Routers:
- web.auth_routes.router (/auth)
- web.checkout_routes.router (/api)
"""
