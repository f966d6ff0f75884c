"""Tests for processor wire models and clients."""

import json
import pytest
from datetime import datetime

import httpx

from settlement_sync.errors import (
    MalformedPayloadError,
    ProcessorConnectionError,
    ProcessorError,
    ProcessorResponseError,
)
from settlement_sync.processor import (
    ClicPagoClient,
    LiquidationListResponse,
    ProcessorConfig,
    RemoteLiquidation,
    RemoteTransaction,
    SimulatorConfig,
    SimulatorProcessorClient,
    SimulatorScenario,
    get_processor_client,
    normalize_transaction_status,
    parse_amount,
    parse_settlement_date,
)


def make_config(page_size: int = 100) -> ProcessorConfig:
    return ProcessorConfig(
        api_key="guid-123",
        secret_key="frase-secreta",
        base_url="https://processor.test/v1",
        timeout=5.0,
        page_size=page_size,
    )


class TestParsing:
    """Tests for amount, date and status parsing helpers."""

    def test_amount_with_spaces(self):
        assert parse_amount("12 345.67") == 12345.67

    def test_amount_with_tabs_and_newlines(self):
        assert parse_amount(" 1\t000.5\n") == 1000.5

    def test_numeric_amount_passes_through(self):
        assert parse_amount(250) == 250.0

    @pytest.mark.parametrize("raw", ["", "   ", "12,345.67", "abc", None, True])
    def test_unparseable_amounts(self, raw):
        with pytest.raises(ValueError):
            parse_amount(raw)

    def test_settlement_date_formats(self):
        assert parse_settlement_date("04/01/2024") == datetime(2024, 1, 4)
        assert parse_settlement_date("04/01/2024 13:45:00") == datetime(2024, 1, 4, 13, 45)
        assert parse_settlement_date("2024-01-04") == datetime(2024, 1, 4)
        assert parse_settlement_date("2024-01-04T08:00:00Z") == datetime(2024, 1, 4, 8, 0)

    def test_bad_settlement_date(self):
        with pytest.raises(ValueError):
            parse_settlement_date("next tuesday")

    @pytest.mark.parametrize("code,expected", [
        ("REALIZADA", "completed"),
        ("EN_PAGO", "in_payment"),
        ("ERROR_VALIDACION_HASH_TOKEN", "hash_token_validation_error"),
        ("ERROR_VALIDACION_HASH_PAGO", "hash_payment_validation_error"),
        ("PENDIENTE", "pending"),
        ("VENCIDA", "overdue"),
        ("completed", "completed"),
        ("DEVUELTA", "refunded"),
    ])
    def test_status_normalization(self, code, expected):
        assert normalize_transaction_status(code) == expected

    def test_unknown_status_is_kept_lowercase(self):
        assert normalize_transaction_status("EN_REVISION") == "en_revision"


class TestRemoteModels:
    """Tests for the processor record models."""

    def test_transaction_from_payload(self):
        record = RemoteTransaction.from_payload({
            "id": 98765,
            "date": "2024-01-02T10:00:00-03:00",
            "amount": "1500.50",
            "payment_method": "CREDIT_CARD",
            "installments": 3,
            "status": "REALIZADA",
        })
        assert record.id == "98765"
        assert record.amount == 1500.5
        assert record.date.tzinfo is None
        assert record.installments == 3
        assert record.currency is None

    def test_transaction_missing_fields(self):
        with pytest.raises(MalformedPayloadError) as exc_info:
            RemoteTransaction.from_payload({"id": "tx-1", "amount": 10})
        assert exc_info.value.record_id == "tx-1"

    def test_liquidation_debit_marker(self):
        record = RemoteLiquidation.from_payload({
            "liquidacionId": "liq-1",
            "NetoLiquidacion": "12 345.67",
            "FechaLiquidacion": "04/01/2024",
            "NumeroSubente": "0042 - TARJETA DE DEBITO",
        })
        assert record.is_debit_card
        assert record.parsed_amount() == 12345.67
        assert record.parsed_date() == datetime(2024, 1, 4)

    def test_liquidation_without_marker(self):
        record = RemoteLiquidation.from_payload({
            "liquidacionId": 77,
            "NetoLiquidacion": "10.00",
            "FechaLiquidacion": "04/01/2024",
            "NumeroSubente": "0042 - TARJETA DE CREDITO",
        })
        assert record.liquidation_id == "77"
        assert not record.is_debit_card

    def test_liquidation_bad_amount(self):
        record = RemoteLiquidation.from_payload({
            "liquidacionId": "liq-bad",
            "NetoLiquidacion": "12,345.67",
            "FechaLiquidacion": "04/01/2024",
        })
        with pytest.raises(MalformedPayloadError) as exc_info:
            record.parsed_amount()
        assert exc_info.value.record_id == "liq-bad"
        assert exc_info.value.kind == "malformed upstream payload"

    def test_envelope_ok(self):
        assert LiquidationListResponse(status=True, code=200).ok
        assert not LiquidationListResponse(status=True, code=500).ok
        assert not LiquidationListResponse(status=False, code=200).ok


class TestClicPagoClient:
    """Tests for the HTTP client using a mock transport."""

    def test_requires_credentials(self):
        with pytest.raises(ValueError):
            ClicPagoClient(ProcessorConfig(api_key="", secret_key="x", base_url="https://p.test"))

    def test_factory(self):
        client = get_processor_client(make_config())
        assert isinstance(client, ClicPagoClient)

    def test_factory_unknown_provider(self):
        with pytest.raises(ValueError, match="Unsupported processor"):
            get_processor_client(make_config(), provider="acme")

    def test_config_from_button(self):
        class Button:
            api_key = "guid-x"
            secret_key = "frase-x"

        config = ProcessorConfig.from_button(Button())
        assert config.api_key == "guid-x"
        assert config.base_url == "https://processor.test/v1"

    async def test_list_transactions_paginates(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            page = int(request.url.params["page"])
            data = [{"id": f"tx-{page}-{i}"} for i in range(2 if page == 1 else 1)]
            return httpx.Response(200, json={"data": data})

        client = ClicPagoClient(make_config(page_size=2), transport=httpx.MockTransport(handler))
        async with client:
            records = await client.list_transactions(datetime(2024, 1, 1), datetime(2024, 1, 31))

        assert [r["id"] for r in records] == ["tx-1-0", "tx-1-1", "tx-2-0"]
        assert len(requests) == 2
        first = requests[0]
        assert first.url.path == "/v1/transactions"
        assert first.url.params["from_date"] == "2024-01-01"
        assert first.url.params["to_date"] == "2024-01-31"
        assert first.headers["Authorization"] == "Bearer guid-123"
        assert first.headers["X-Api-Secret"] == "frase-secreta"

    async def test_list_liquidations(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["dateLiquidacion"] == "01/01/2024"
            return httpx.Response(200, json={
                "status": True,
                "code": 200,
                "data": {"liquidaciones": [{"liquidacionId": "liq-1"}]},
            })

        client = ClicPagoClient(make_config(), transport=httpx.MockTransport(handler))
        response = await client.list_liquidations(datetime(2024, 1, 1), datetime(2024, 1, 31))
        await client.close()

        assert response.ok
        assert response.liquidaciones == [{"liquidacionId": "liq-1"}]

    async def test_list_liquidations_false_status(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"status": False, "code": 401, "message": "bad frase"})

        client = ClicPagoClient(make_config(), transport=httpx.MockTransport(handler))
        with pytest.raises(ProcessorResponseError, match="bad frase"):
            await client.list_liquidations(datetime(2024, 1, 1), datetime(2024, 1, 31))
        await client.close()

    async def test_non_200_is_response_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="maintenance")

        client = ClicPagoClient(make_config(), transport=httpx.MockTransport(handler))
        with pytest.raises(ProcessorResponseError) as exc_info:
            await client.list_transactions(datetime(2024, 1, 1), datetime(2024, 1, 31))
        await client.close()

        assert exc_info.value.status_code == 503

    async def test_timeout_is_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        client = ClicPagoClient(make_config(), transport=httpx.MockTransport(handler))
        with pytest.raises(ProcessorConnectionError):
            await client.get_liquidation_transactions("liq-1")
        await client.close()

    async def test_transport_error_is_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = ClicPagoClient(make_config(), transport=httpx.MockTransport(handler))
        with pytest.raises(ProcessorError):
            await client.list_transactions(datetime(2024, 1, 1), datetime(2024, 1, 31))
        await client.close()

    async def test_liquidation_transactions(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/liquidations/liq-9/transactions"
            return httpx.Response(200, content=json.dumps({"data": [{"id": 1}, {"id": "tx-2"}, {}]}))

        client = ClicPagoClient(make_config(), transport=httpx.MockTransport(handler))
        ids = await client.get_liquidation_transactions("liq-9")
        await client.close()

        assert ids == ["1", "tx-2"]


class TestSimulatorClient:
    """Tests for the in-memory processor."""

    async def test_lists_added_records(self):
        sim = SimulatorProcessorClient()
        sim.add_transaction("tx-1", datetime(2024, 1, 2), 10.0)
        sim.add_liquidation("liq-1", "10.00", "04/01/2024", transaction_ids=["tx-1"])

        transactions = await sim.list_transactions(datetime(2024, 1, 1), datetime(2024, 1, 31))
        liquidations = await sim.list_liquidations(datetime(2024, 1, 1), datetime(2024, 1, 31))

        assert transactions[0]["date"] == "2024-01-02T00:00:00"
        assert liquidations.ok
        assert await sim.get_liquidation_transactions("liq-1") == ["tx-1"]
        assert sim.calls == ["list_transactions", "list_liquidations", "get_liquidation_transactions"]

    async def test_injected_timeout(self):
        sim = SimulatorProcessorClient(
            SimulatorConfig(scenarios={"list_liquidations": SimulatorScenario.TIMEOUT})
        )
        with pytest.raises(ProcessorConnectionError):
            await sim.list_liquidations(datetime(2024, 1, 1), datetime(2024, 1, 31))

    async def test_injected_rejection(self):
        sim = SimulatorProcessorClient(
            SimulatorConfig(scenarios={"list_transactions": SimulatorScenario.REJECTED})
        )
        with pytest.raises(ProcessorResponseError):
            await sim.list_transactions(datetime(2024, 1, 1), datetime(2024, 1, 31))

    async def test_failing_liquidation_lookup(self):
        sim = SimulatorProcessorClient(SimulatorConfig(failing_liquidations={"liq-2"}))
        sim.add_liquidation("liq-2", "1.00", "04/01/2024", transaction_ids=["tx-1"])
        with pytest.raises(ProcessorConnectionError):
            await sim.get_liquidation_transactions("liq-2")
