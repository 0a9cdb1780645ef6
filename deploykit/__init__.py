"""deploykit - scripted install, repair and removal of applications on managed endpoints."""

__version__ = "0.1.0"
