"""
Broker Connectors – abstraction layer over the remote account service.

Each connector implements the RemoteAccountService contract:
  list_accounts() / get_account() / create_account()  → account registry
  deploy() / undeploy()                               → deployment
  get_connection_state()                              → readiness
  get_rpc_connection()                                → information queries
"""
from app.services.broker_connectors.base import (
    RemoteAccountService,
    RemoteCallError,
    RemoteNotFoundError,
    RpcConnection,
)

__all__ = ["RemoteAccountService", "RemoteCallError", "RemoteNotFoundError", "RpcConnection"]
