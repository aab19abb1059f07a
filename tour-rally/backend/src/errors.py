"""Error taxonomy shared by the planning, tracking and reward services."""

from __future__ import annotations


class TourError(RuntimeError):
    pass


class InputError(TourError):
    """Missing or invalid request fields; rejected before any computation."""


class NotFoundError(TourError):
    """A named spot, reward id or visitor record does not resolve."""


class ExternalUnavailable(TourError):
    """A directions or content provider failed, timed out or returned junk."""


class DirectionsError(ExternalUnavailable):
    pass


class ContentError(ExternalUnavailable):
    pass
