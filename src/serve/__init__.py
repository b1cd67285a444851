"""Export protocol serving components.

This module streams experiments, tag data, and blob chunks at a snapshot.
It also holds the caller-side client that consumes those streams.
"""
