"""Storage collaborators for the export engine.

This module declares the store, blob, and authorization interfaces.
It also ships filesystem and S3 reference implementations of them.
"""
