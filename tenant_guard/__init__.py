"""
tenant_guard : isolation des tenants et prévention des abus pour un
backend SaaS multi-institutions.
"""

__version__ = "1.0.0"
