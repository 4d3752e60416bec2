"""Viewer-side client for the event check-in backend."""

from .backend_client import CheckinClient, CheckinError, get_client, close_client

__all__ = ['CheckinClient', 'CheckinError', 'get_client', 'close_client']
