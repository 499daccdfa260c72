"""End-to-end pipeline scenarios for ConnectionManager over the fake remote."""

import pytest

from app.core.config import Settings
from app.services.broker_connectors.metaapi import MetaApiConnector
from app.services.connection_manager import ConnectionManager
from app.services.errors import Stage


class TestConnect:

    @pytest.mark.asyncio
    async def test_new_account_is_created_deployed_and_read(self, manager, remote):
        result = await manager.connect("Acme-Live", "1001", "p")

        assert result.success is True
        assert result.account_id
        assert result.data["balance"] == 10000.0
        assert result.message == "Connected to MT5 account successfully"
        assert remote.calls["create"] == 1
        assert remote.calls["deploy"] == 1
        assert remote.calls["account_information"] == 1

    @pytest.mark.asyncio
    async def test_existing_account_differing_in_case_is_reused(self, manager, remote):
        existing = remote.add_account("Acme-Live", "1001", deployed=True, connected=True)

        result = await manager.connect("acme-live", "1001", "p")

        assert result.success is True
        assert result.account_id == existing
        assert remote.calls["create"] == 0
        assert remote.calls["deploy"] == 0

    @pytest.mark.asyncio
    async def test_missing_fields_are_validation_errors(self, manager, remote):
        result = await manager.connect("Acme-Live", None, "p")

        assert result.success is False
        assert result.error.kind == "ValidationError"
        assert result.error.status_code == 400
        assert sum(remote.calls.values()) == 0

    @pytest.mark.asyncio
    async def test_deploy_failure_stops_pipeline(self, manager, remote):
        remote.fail_deploy = True

        result = await manager.connect("Acme-Live", "1001", "p")

        assert result.success is False
        assert result.error.kind == "RemoteServiceError"
        assert result.error.stage == Stage.DEPLOYMENT
        assert remote.calls["state"] == 0
        assert remote.calls["account_information"] == 0

    @pytest.mark.asyncio
    async def test_connection_timeout(self, manager, remote):
        remote.never_connect = True

        result = await manager.connect("Acme-Live", "1001", "p")

        assert result.success is False
        assert result.error.kind == "ConnectionTimeoutError"
        assert result.account_id is not None
        assert remote.calls["account_information"] == 0

    @pytest.mark.asyncio
    async def test_password_never_in_failure_message(self, manager, remote):
        remote.fail_create = True

        result = await manager.connect("Acme-Live", "1001", "topsecret")

        assert result.success is False
        assert "topsecret" not in result.message

    @pytest.mark.asyncio
    async def test_short_password_does_not_mangle_other_messages(self, manager, remote):
        remote.never_connect = True

        result = await manager.connect("Acme-Live", "1001", "e")

        assert result.error.kind == "ConnectionTimeoutError"
        assert result.message == "Account did not connect within 0.5s (last state: connecting)"


class TestAccountInfo:

    @pytest.mark.asyncio
    async def test_unknown_account_is_not_found_without_remediation(self, manager, remote):
        result = await manager.account_info("does-not-exist")

        assert result.success is False
        assert result.error.kind == "NotFoundError"
        assert remote.calls["deploy"] == 0
        assert remote.calls["state"] == 0

    @pytest.mark.asyncio
    async def test_connected_account(self, manager, remote):
        account_id = remote.add_account("Acme-Live", "1001", deployed=True, connected=True)

        result = await manager.account_info(account_id)

        assert result.success is True
        assert result.data["currency"] == "USD"


class TestHistory:

    @pytest.mark.asyncio
    async def test_disconnected_account_single_remediation(self, manager, remote):
        account_id = remote.add_account("Acme-Live", "1001")
        remote.history[account_id] = [{"id": "42"}]

        result = await manager.history(account_id)

        assert result.success is True
        assert result.data == {"history": [{"id": "42"}]}
        assert remote.calls["deploy"] == 1

    @pytest.mark.asyncio
    async def test_disconnected_account_remediation_timeout(self, manager, remote):
        remote.never_connect = True
        account_id = remote.add_account("Acme-Live", "1001")

        result = await manager.history(account_id)

        assert result.error.kind == "ConnectionTimeoutError"
        assert remote.calls["deploy"] == 1
        assert remote.calls["history"] == 0


class TestDisconnect:

    @pytest.mark.asyncio
    async def test_undeploys(self, manager, remote):
        account_id = remote.add_account("Acme-Live", "1001", deployed=True, connected=True)

        result = await manager.disconnect(account_id)

        assert result.success is True
        assert remote.calls["undeploy"] == 1
        assert remote.records[account_id]["deployed"] is False
        # Disconnect never deletes the account
        assert account_id in remote.records

    @pytest.mark.asyncio
    async def test_unknown_account(self, manager, remote):
        result = await manager.disconnect("nope")

        assert result.error.kind == "NotFoundError"
        assert remote.calls["undeploy"] == 0

    @pytest.mark.asyncio
    async def test_undeploy_rejection(self, manager, remote):
        remote.fail_undeploy = True
        account_id = remote.add_account("Acme-Live", "1001")

        result = await manager.disconnect(account_id)

        assert result.error.kind == "RemoteServiceError"
        assert result.error.stage == Stage.UNDEPLOYMENT


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_check_remote(self, manager, remote):
        remote.add_account("Acme-Live", "1001")
        assert await manager.check_remote() == {"status": "connected", "accountCount": 1}

        remote.fail_list = True
        assert (await manager.check_remote())["status"] == "error"

    @pytest.mark.asyncio
    async def test_close_releases_remote(self, manager, remote):
        await manager.close()
        assert remote.closed is True

    def test_from_settings_requires_token(self):
        with pytest.raises(RuntimeError):
            ConnectionManager.from_settings(Settings(META_API_TOKEN=None))

    @pytest.mark.asyncio
    async def test_from_settings_builds_metaapi_manager(self):
        manager = ConnectionManager.from_settings(
            Settings(META_API_TOKEN="token-123", WARM_CONNECT_TIMEOUT_SECONDS=5)
        )
        try:
            assert isinstance(manager.service, MetaApiConnector)
            assert manager.waiter.warm_timeout == 5
        finally:
            await manager.close()
