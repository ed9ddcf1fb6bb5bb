"""Exceptions raised by collectors and publishers."""

from __future__ import annotations


class CollectionError(RuntimeError):
    """A stats source could not be listed, read or decoded."""


class MalformedSnapshotError(CollectionError):
    """A stats payload decoded but lacks the fields a snapshot needs."""


class PublishError(RuntimeError):
    """The ingestion API rejected or failed to accept a batch."""
