"""
Data-protection workflow core.

This package provides:
- consent/cookie disclosure sanitizing (sanitize)
- the data-subject request log (requests)
- the single-slot data breach notification workflow (breach)
- registered admin settings with their sanitizers (settings)
- user data access export (access)
"""
