"""
Access-control feature module.

Implements the role catalog, role assignment on organizations and their
nested entities, the membership registry, and authorization resolution.
"""
