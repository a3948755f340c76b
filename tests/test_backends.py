import json

import httpx
import pytest
from fakes import FakeOp, item_json

from opbroker.backends import (
    CliBackend,
    ConnectBackend,
    is_item_id,
    normalize_value,
    select_backend,
)
from opbroker.config import BrokerConfigModel
from opbroker.errors import BackendError, BackendUnavailableError

ITEM_ID = "abcdefghijklmnopqrstuvwxyz"


def test_normalize_value():
    assert normalize_value("  s3cr3t \n") == "s3cr3t"
    assert normalize_value("line one\\nline two") == "line one\nline two"


def test_is_item_id():
    assert is_item_id(ITEM_ID)
    assert not is_item_id("postgres")
    assert not is_item_id(ITEM_ID.upper())
    assert not is_item_id(ITEM_ID + "a")


class TestCliBackend:
    @pytest.fixture
    def op(self):
        return FakeOp()

    @pytest.fixture
    def backend(self, op):
        return CliBackend(account="acme", runner=op)

    @pytest.mark.asyncio
    async def test_fetch_fields(self, backend, op):
        op.respond(
            "item",
            "get",
            stdout=item_json(
                "vault-id",
                {"password": " line\\nbreak ", "notesPlain": "hello", "port": 5432},
                vault_name="infra",
            ),
        )

        fields = await backend.fetch_fields("infra", "postgres")

        assert fields == {"password": "line\nbreak", "notes": "hello", "port": "5432"}
        assert op.calls == [
            [
                "op",
                "item",
                "get",
                "postgres",
                "--vault",
                "infra",
                "--format",
                "json",
                "--account",
                "acme",
            ]
        ]

    @pytest.mark.asyncio
    async def test_vault_matched_by_id(self, backend, op):
        op.respond("item", "get", stdout=item_json("vault-id", {"password": "x"}))

        assert await backend.fetch_fields("vault-id", "postgres") == {"password": "x"}

    @pytest.mark.asyncio
    async def test_wrong_vault_is_empty(self, backend, op):
        op.respond("item", "get", stdout=item_json("other-id", {"password": "x"}, "other"))

        assert await backend.fetch_fields("infra", "postgres") == {}

    @pytest.mark.asyncio
    async def test_missing_item_is_empty(self, backend, op):
        op.respond(
            "item",
            "get",
            returncode=1,
            stderr='[ERROR] "postgres" isn\'t an item. Specify the item with its UUID, name, or domain.',
        )

        assert await backend.fetch_fields("infra", "postgres") == {}

    @pytest.mark.asyncio
    async def test_command_failure_raises(self, backend, op):
        op.respond("item", "get", returncode=1, stderr="[ERROR] connection reset")

        with pytest.raises(BackendError, match="postgres.*infra.*connection reset"):
            await backend.fetch_fields("infra", "postgres")

    @pytest.mark.asyncio
    async def test_unparsable_output_raises(self, backend, op):
        op.respond("item", "get", stdout="{not json")

        with pytest.raises(BackendError, match="Unexpected op output"):
            await backend.fetch_fields("infra", "postgres")

    @pytest.mark.asyncio
    async def test_without_account(self, op):
        op.respond("item", "get", stdout=item_json("v", {}, "infra"))

        await CliBackend(runner=op).fetch_fields("infra", "postgres")

        assert "--account" not in op.calls[0]

    @pytest.mark.asyncio
    async def test_fetch_document(self, backend, op):
        op.respond("document", "get", stdout="-----BEGIN CERTIFICATE-----\n")

        content = await backend.fetch_document("infra", "tls")

        assert content == "-----BEGIN CERTIFICATE-----\n"
        assert op.calls[0][:6] == ["op", "document", "get", "tls", "--vault", "infra"]

    @pytest.mark.asyncio
    async def test_missing_document_is_empty(self, backend, op):
        op.respond("document", "get", returncode=1, stderr='[ERROR] "tls" isn\'t an item.')

        assert await backend.fetch_document("infra", "tls") == ""

    @pytest.mark.asyncio
    async def test_document_failure_raises(self, backend, op):
        op.respond("document", "get", returncode=1, stderr="[ERROR] timeout")

        with pytest.raises(BackendError, match="document"):
            await backend.fetch_document("infra", "tls")

    @pytest.mark.asyncio
    async def test_fetch_one_time_password(self, backend, op):
        op.respond("item", "get", "aws", "--otp", stdout="123456\n")

        assert await backend.fetch_one_time_password("infra", "aws") == "123456"
        assert op.calls[0] == [
            "op",
            "item",
            "get",
            "aws",
            "--otp",
            "--vault",
            "infra",
            "--account",
            "acme",
        ]

    @pytest.mark.asyncio
    async def test_one_time_password_failure_raises(self, backend, op):
        op.respond("item", "get", "aws", "--otp", returncode=1, stderr="[ERROR] no otp")

        with pytest.raises(BackendError, match="--otp"):
            await backend.fetch_one_time_password("infra", "aws")


def connect_item(fields):
    return {"id": ITEM_ID, "title": "postgres", "fields": fields}


class ConnectServer:
    """Minimal Connect API served through ``httpx.MockTransport``."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.items = {
            ITEM_ID: connect_item(
                [
                    {"id": "password", "type": "CONCEALED", "label": "password", "value": " pw "},
                    {"id": "notesPlain", "type": "STRING", "label": "notesPlain", "value": "n"},
                    {"id": "empty", "type": "STRING", "label": "empty"},
                    {
                        "id": "otp",
                        "type": "OTP",
                        "label": "one-time password",
                        "value": "otpauth://totp/acme",
                        "totp": "654321",
                    },
                ]
            )
        }
        self.titles = {"postgres": ITEM_ID}
        self.files = {ITEM_ID: [{"id": "f1", "name": "ca.pem"}, {"id": "f2", "name": "key.pem"}]}
        self.contents = {"f1": "CA", "f2": "KEY"}
        self.fail = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail:
            return httpx.Response(500, json={"message": "boom"})

        parts = request.url.path.strip("/").split("/")
        # v1 vaults <vault> items [<id> [files [<file> content]]]
        if parts[:2] != ["v1", "vaults"] or len(parts) < 4 or parts[3] != "items":
            return httpx.Response(404)

        if len(parts) == 4:
            title = request.url.params["filter"].removeprefix('title eq "').removesuffix('"')
            matches = [{"id": i, "title": t} for t, i in self.titles.items() if t == title]
            return httpx.Response(200, json=matches)

        item_id = parts[4]
        if item_id not in self.items:
            return httpx.Response(404, json={"message": "item not found"})
        if len(parts) == 5:
            return httpx.Response(200, json=self.items[item_id])
        if len(parts) == 6:
            return httpx.Response(200, json=self.files[item_id])
        return httpx.Response(200, text=self.contents[parts[6]])


class TestConnectBackend:
    @pytest.fixture
    def server(self):
        return ConnectServer()

    @pytest.fixture
    async def backend(self, server):
        backend = ConnectBackend(
            "http://connect:8080/", "connect-token", transport=httpx.MockTransport(server)
        )
        yield backend
        await backend.aclose()

    @pytest.mark.asyncio
    async def test_fetch_fields_by_title(self, backend, server):
        fields = await backend.fetch_fields("infra", "postgres")

        assert fields["password"] == "pw"
        assert fields["notes"] == "n"
        assert fields["empty"] == ""
        assert [r.url.path for r in server.requests] == [
            "/v1/vaults/infra/items",
            f"/v1/vaults/infra/items/{ITEM_ID}",
        ]
        assert server.requests[0].url.params["filter"] == 'title eq "postgres"'
        assert server.requests[0].headers["Authorization"] == "Bearer connect-token"

    @pytest.mark.asyncio
    async def test_fetch_fields_by_id_skips_title_lookup(self, backend, server):
        await backend.fetch_fields("infra", ITEM_ID)

        assert [r.url.path for r in server.requests] == [f"/v1/vaults/infra/items/{ITEM_ID}"]

    @pytest.mark.asyncio
    async def test_unknown_title_is_empty(self, backend):
        assert await backend.fetch_fields("infra", "redis") == {}

    @pytest.mark.asyncio
    async def test_title_quotes_are_escaped(self, backend, server):
        assert await backend.fetch_fields("infra", 'say "hi" \\o/') == {}

        assert server.requests[0].url.params["filter"] == r'title eq "say \"hi\" \\o/"'

    @pytest.mark.asyncio
    async def test_unknown_id_is_empty(self, backend):
        assert await backend.fetch_fields("infra", "z" * 26) == {}

    @pytest.mark.asyncio
    async def test_server_error_raises(self, backend, server):
        server.fail = True

        with pytest.raises(BackendError, match="HTTP 500"):
            await backend.fetch_fields("infra", "postgres")

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        backend = ConnectBackend("http://connect:8080", "t", transport=httpx.MockTransport(refuse))
        try:
            with pytest.raises(BackendError, match="connection refused"):
                await backend.fetch_fields("infra", ITEM_ID)
        finally:
            await backend.aclose()

    @pytest.mark.asyncio
    async def test_fetch_document_first_file(self, backend):
        assert await backend.fetch_document("infra", "postgres") == "CA"

    @pytest.mark.asyncio
    async def test_fetch_document_by_name_or_id(self, backend):
        assert await backend.fetch_document("infra", "postgres", "key.pem") == "KEY"
        assert await backend.fetch_document("infra", "postgres", "f1") == "CA"

    @pytest.mark.asyncio
    async def test_missing_document_is_empty(self, backend):
        assert await backend.fetch_document("infra", "postgres", "nope.pem") == ""
        assert await backend.fetch_document("infra", "redis") == ""

    @pytest.mark.asyncio
    async def test_fetch_one_time_password(self, backend):
        assert await backend.fetch_one_time_password("infra", "postgres") == "654321"

    @pytest.mark.asyncio
    async def test_missing_one_time_password_raises(self, backend, server):
        server.items[ITEM_ID]["fields"] = server.items[ITEM_ID]["fields"][:1]

        with pytest.raises(BackendError, match="No one-time password"):
            await backend.fetch_one_time_password("infra", "postgres")

    @pytest.mark.asyncio
    async def test_invalid_payload_raises(self, server):
        def broken(request):
            return httpx.Response(200, content=json.dumps({"unexpected": True}).encode())

        backend = ConnectBackend("http://connect:8080", "t", transport=httpx.MockTransport(broken))
        try:
            with pytest.raises(BackendError, match="Unexpected Connect response"):
                await backend.fetch_fields("infra", ITEM_ID)
        finally:
            await backend.aclose()


class TestSelectBackend:
    @pytest.mark.asyncio
    async def test_connect_wins_when_configured(self, config, monkeypatch):
        monkeypatch.setattr("opbroker.backends.check_command_available", lambda _: True)
        environ = {"OP_CONNECT_HOST": "http://connect:8080", "OP_CONNECT_TOKEN": "t"}

        backend = select_backend(config, environ)
        try:
            assert isinstance(backend, ConnectBackend)
            assert not backend.requires_session
            assert backend.host == "http://connect:8080"
        finally:
            await backend.aclose()

    def test_cli_when_op_is_installed(self, config, monkeypatch):
        monkeypatch.setattr("opbroker.backends.check_command_available", lambda _: True)

        backend = select_backend(config, {"OP_CONNECT_HOST": "http://connect:8080"})

        assert isinstance(backend, CliBackend)
        assert backend.requires_session
        assert backend.account == "acme"

    def test_custom_op_path(self, monkeypatch):
        seen = []
        monkeypatch.setattr(
            "opbroker.backends.check_command_available", lambda cmd: seen.append(cmd) or True
        )
        config = BrokerConfigModel(account="acme", op_path="/opt/1password/op")

        backend = select_backend(config, {})

        assert seen == ["/opt/1password/op"]
        assert backend.op_path == "/opt/1password/op"

    def test_nothing_available(self, config, monkeypatch):
        monkeypatch.setattr("opbroker.backends.check_command_available", lambda _: False)

        with pytest.raises(BackendUnavailableError, match="OP_CONNECT_HOST"):
            select_backend(config, {})
