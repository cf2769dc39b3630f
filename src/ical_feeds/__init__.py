"""iCal feed ingestion: fetch, expand, normalize and deliver calendar events."""

__version__ = "0.1.0"
