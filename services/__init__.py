"""
Service layer for the client/contact bulk upload pipeline.

Parser -> preview builder -> committer -> report service. Everything here is
framework-agnostic and used by the API, the CLI and the tests alike.
"""

__version__ = "1.0.0"
