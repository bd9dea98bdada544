"""MusicScan queue backend - batch processors for the music collection platform."""

__version__ = "0.1.0"
