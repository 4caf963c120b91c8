"""Compliance validation and incident lifecycle core.

This package contains the validator framework, the MUI/UI incident drafter and
the incident finalizer. Persistence and AI tagging are reached only through the
protocols in `compliance_core.services.store` and
`compliance_core.services.tag_analysis`, so everything here can be tested
without a database.
"""
