"""
SECOP client tests.
Tests for SoQL query building and the open-data HTTP integration.
"""

from unittest.mock import patch

import pytest
import requests

from secop_alerts.config import SecopConfig
from secop_alerts.data.secop import SecopClient, UpstreamUnavailable
from secop_alerts.database.models import AlertFilters

from conftest import make_record, mock_response


@pytest.fixture
def client():
    """Create client instance."""
    return SecopClient(timeout=10, default_limit=20, max_limit=100)


class TestBuildParams:
    """Test SoQL parameter building."""

    def test_no_filters(self, client: SecopClient):
        """Should only require a publication date."""
        params = client.build_params(AlertFilters())
        assert params["$where"] == "fecha_de_publicacion_del IS NOT NULL"
        assert params["$order"] == "fecha_de_publicacion_del DESC"
        assert params["$limit"] == "20"

    def test_keyword_searches_name_description_and_entity(self, client: SecopClient):
        """Should match the keyword in any of the text columns."""
        where = client.build_params(AlertFilters(keyword="carreteras"))["$where"]
        assert "upper(nombre_del_procedimiento) LIKE '%CARRETERAS%'" in where
        assert "upper(descripci_n_del_procedimiento) LIKE '%CARRETERAS%'" in where
        assert "upper(entidad) LIKE '%CARRETERAS%'" in where

    def test_filters_are_conjunctive(self, client: SecopClient):
        """Should AND every supplied filter."""
        filters = AlertFilters(
            keyword="vías",
            departamento="Antioquia",
            municipio="Medellín",
            modalidad="Licitación",
            fase="Selección",
            tipo_contrato="Obra",
        )
        where = client.build_params(filters)["$where"]
        assert where.count(" AND ") == 6
        assert "upper(departamento_entidad) LIKE '%ANTIOQUIA%'" in where
        assert "upper(ciudad_entidad) LIKE '%MEDELLÍN%'" in where
        assert "upper(modalidad_de_contratacion) LIKE '%LICITACIÓN%'" in where
        assert "upper(estado_del_procedimiento) LIKE '%SELECCIÓN%'" in where
        assert "tipo_de_contrato='Obra'" in where

    def test_case_insensitive_municipality(self, client: SecopClient):
        """Should produce identical queries regardless of case."""
        upper = client.build_params(AlertFilters(municipio="BOGOTÁ"))
        lower = client.build_params(AlertFilters(municipio="bogotá"))
        assert upper == lower

    def test_blank_filter_is_absent(self, client: SecopClient):
        """Should ignore whitespace-only filters."""
        assert client.build_params(AlertFilters(keyword="  ")) == client.build_params(
            AlertFilters()
        )

    def test_location_cleanup(self, client: SecopClient):
        """Should strip the D.C. suffix and commas from locations."""
        where = client.build_params(AlertFilters(municipio="Bogotá, D.C."))["$where"]
        assert "upper(ciudad_entidad) LIKE '%BOGOTÁ%'" in where

    def test_quotes_are_escaped(self, client: SecopClient):
        """Should escape single quotes in literals."""
        where = client.build_params(AlertFilters(keyword="O'Higgins"))["$where"]
        assert "'%O''HIGGINS%'" in where

    @pytest.mark.parametrize(
        "requested,expected",
        [(None, "20"), (5, "5"), (100, "100"), (5000, "100"), (0, "1"), (-3, "1")],
    )
    def test_limit_is_clamped(self, client: SecopClient, requested, expected):
        """Should clamp the limit instead of rejecting it."""
        assert client.build_params(AlertFilters(), requested)["$limit"] == expected


class TestQuery:
    """Test HTTP behaviour with mocked requests."""

    def test_query_returns_items_in_order(self, client: SecopClient):
        """Should normalize records keeping the upstream order."""
        records = [make_record("CO1.3"), make_record("CO1.2"), make_record("CO1.1")]

        with patch("requests.get", return_value=mock_response(records)) as mock_get:
            items = client.query(AlertFilters(keyword="carreteras"), limit=3)

        assert [item.id for item in items] == ["CO1.3", "CO1.2", "CO1.1"]
        assert items[0].record["entidad"] == "ALCALDIA MAYOR DE BOGOTA"
        assert mock_get.call_args.kwargs["timeout"] == 10
        assert mock_get.call_args.kwargs["params"]["$limit"] == "3"

    def test_records_without_id_are_dropped(self, client: SecopClient):
        """Should skip records that have no process id."""
        records = [make_record("CO1.1"), {"entidad": "SIN ID"}, make_record("")]

        with patch("requests.get", return_value=mock_response(records)):
            items = client.query(AlertFilters())

        assert [item.id for item in items] == ["CO1.1"]

    def test_from_config(self):
        """Should take its settings from the secop config section."""
        client = SecopClient.from_config(
            SecopConfig(app_token="token-123", timeout_seconds=3, max_limit=50)
        )
        assert client.app_token == "token-123"
        assert client.timeout == 3
        assert client.clamp_limit(500) == 50

    def test_app_token_header(self):
        """Should send the app token when configured."""
        client = SecopClient(app_token="token-123")

        with patch("requests.get", return_value=mock_response([])) as mock_get:
            client.query(AlertFilters())

        assert mock_get.call_args.kwargs["headers"]["X-App-Token"] == "token-123"

    def test_no_app_token_header_by_default(self, client: SecopClient):
        """Should omit the app token header when none is set."""
        with patch("requests.get", return_value=mock_response([])) as mock_get:
            client.query(AlertFilters())

        assert "X-App-Token" not in mock_get.call_args.kwargs["headers"]

    def test_timeout_is_upstream_unavailable(self, client: SecopClient):
        """Should map a timeout to UpstreamUnavailable."""
        with patch("requests.get", side_effect=requests.Timeout("slow")):
            with pytest.raises(UpstreamUnavailable, match="timed out"):
                client.query(AlertFilters())

    def test_connection_error_is_upstream_unavailable(self, client: SecopClient):
        """Should map connection failures to UpstreamUnavailable."""
        with patch("requests.get", side_effect=requests.ConnectionError("offline")):
            with pytest.raises(UpstreamUnavailable):
                client.query(AlertFilters())

    def test_http_error_is_upstream_unavailable(self, client: SecopClient):
        """Should map non-2xx responses to UpstreamUnavailable."""
        response = mock_response({"error": "boom"}, status_code=500)
        response.raise_for_status.side_effect = requests.HTTPError("500 Server Error")

        with patch("requests.get", return_value=response):
            with pytest.raises(UpstreamUnavailable):
                client.query(AlertFilters())

    def test_non_list_body_is_upstream_unavailable(self, client: SecopClient):
        """Should reject a JSON body that isn't an array."""
        with patch("requests.get", return_value=mock_response({"message": "x"})):
            with pytest.raises(UpstreamUnavailable, match="expected a list"):
                client.query(AlertFilters())

    def test_invalid_json_is_upstream_unavailable(self, client: SecopClient):
        """Should reject an unparseable body."""
        response = mock_response(None)
        response.json.side_effect = ValueError("Expecting value")

        with patch("requests.get", return_value=response):
            with pytest.raises(UpstreamUnavailable):
                client.query(AlertFilters())

    def test_get_process(self, client: SecopClient):
        """Should fetch a single process by id."""
        with patch(
            "requests.get", return_value=mock_response([make_record("CO1.9")])
        ) as mock_get:
            item = client.get_process("CO1.9")

        assert item.id == "CO1.9"
        assert mock_get.call_args.kwargs["params"]["$where"] == "id_del_proceso='CO1.9'"

    def test_get_process_missing(self, client: SecopClient):
        """Should return None when no process matches."""
        with patch("requests.get", return_value=mock_response([])):
            assert client.get_process("nope") is None
