"""Tests for the CloudWatch metrics client."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from helpscout_mcp.services.metrics import MetricsClient, operation_label


class TestOperationLabel:
    def test_collapses_numeric_segments(self):
        assert operation_label("get", "/conversations/42/threads") == "GET /conversations/{id}/threads"

    def test_strips_query_string(self):
        assert operation_label("GET", "/mailboxes?page=2") == "GET /mailboxes"

    def test_keeps_non_numeric_segments(self):
        assert operation_label("POST", "/oauth2/token") == "POST /oauth2/token"


class TestMetricsRecording:
    """Verify that record_success / record_failure buffer the right data."""

    def _make_client(self) -> MetricsClient:
        with patch.dict("os.environ", {"METRICS_ENABLED": "false"}):
            return MetricsClient()

    def test_record_success_appends_two_data_points(self):
        client = self._make_client()
        client.record_success("GET", "/mailboxes", latency_ms=123.4)
        # RequestCount + Latency
        assert len(client._buffer) == 2
        names = {m["MetricName"] for m in client._buffer}
        assert names == {"HelpScoutAPI/RequestCount", "HelpScoutAPI/Latency"}

    def test_record_failure_appends_count_and_error(self):
        client = self._make_client()
        client.record_failure("GET", "/conversations/1", "NOT_FOUND")
        assert len(client._buffer) == 2
        names = {m["MetricName"] for m in client._buffer}
        assert names == {"HelpScoutAPI/RequestCount", "HelpScoutAPI/ErrorCount"}

    def test_record_failure_with_latency_appends_three_data_points(self):
        client = self._make_client()
        client.record_failure("PATCH", "/conversations/1", "UPSTREAM_ERROR", latency_ms=500.0)
        assert len(client._buffer) == 3

    def test_latency_dimension_uses_operation_label(self):
        client = self._make_client()
        client.record_success("GET", "/conversations/99/threads", latency_ms=50.0)
        latency = next(m for m in client._buffer if m["MetricName"] == "HelpScoutAPI/Latency")
        dim_map = {d["Name"]: d["Value"] for d in latency["Dimensions"]}
        assert dim_map["Service"] == "helpscout"
        assert dim_map["Operation"] == "GET /conversations/{id}/threads"

    def test_failure_dimensions_include_error_kind(self):
        client = self._make_client()
        client.record_failure("GET", "/mailboxes", "RATE_LIMIT")
        error_metric = next(
            m for m in client._buffer if m["MetricName"] == "HelpScoutAPI/ErrorCount"
        )
        dim_map = {d["Name"]: d["Value"] for d in error_metric["Dimensions"]}
        assert dim_map["ErrorKind"] == "RATE_LIMIT"

    def test_explicit_enabled_flag_overrides_env(self):
        with patch.dict("os.environ", {"METRICS_ENABLED": "true"}):
            client = MetricsClient(enabled=False)
        assert client.enabled is False


class TestMetricsFlush:
    """Verify flush behaviour with and without CloudWatch enabled."""

    def test_flush_when_disabled_sends_nothing_and_clears(self):
        client = MetricsClient(enabled=False)
        client.record_success("GET", "/mailboxes", latency_ms=100.0)
        assert client.flush() == 0
        assert client._buffer == []

    def test_flush_when_enabled_calls_put_metric_data(self):
        with patch.object(MetricsClient, "_start_flush_thread"):
            client = MetricsClient(enabled=True)
        mock_cw = MagicMock()
        client._cw_client = mock_cw

        client.record_success("GET", "/mailboxes", latency_ms=100.0)
        sent = client.flush()

        assert sent == 2
        mock_cw.put_metric_data.assert_called_once()
        kwargs = mock_cw.put_metric_data.call_args.kwargs
        assert kwargs["Namespace"] == "HelpScoutMCP"
        assert len(kwargs["MetricData"]) == 2

    def test_flush_empty_buffer_returns_zero(self):
        with patch.object(MetricsClient, "_start_flush_thread"):
            client = MetricsClient(enabled=True)
        assert client.flush() == 0

    def test_flush_failure_is_logged_not_raised(self):
        with patch.object(MetricsClient, "_start_flush_thread"):
            client = MetricsClient(enabled=True)
        client._cw_client = MagicMock()
        client._cw_client.put_metric_data.side_effect = RuntimeError("throttled")

        client.record_success("GET", "/mailboxes", latency_ms=1.0)
        assert client.flush() == 0
