"""Mirror filtered events from shared calendars into per-user calendars."""

__version__ = "1.0.0"
