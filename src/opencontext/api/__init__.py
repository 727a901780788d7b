"""OpenContext HTTP API."""

from opencontext.api.app import create_app

__all__ = ["create_app"]
