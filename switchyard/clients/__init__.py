"""Client channels bound to an application."""

from switchyard.clients.http import AppClient, LoginResult, RequestRecord, client_factory

__all__ = ["AppClient", "LoginResult", "RequestRecord", "client_factory"]
