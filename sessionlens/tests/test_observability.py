import unittest

from sessionlens import observability
from sessionlens.observability import otel


class ObservabilityTests(unittest.TestCase):
    def test_otlp_endpoint_normalization(self) -> None:
        self.assertEqual(otel._normalize_otlp_endpoint("", "/v1/traces"), "")
        self.assertEqual(otel._normalize_otlp_endpoint("http://collector:4318", "/v1/traces"), "http://collector:4318/v1/traces")
        self.assertEqual(otel._normalize_otlp_endpoint("http://collector:4318/", "/v1/metrics"), "http://collector:4318/v1/metrics")
        self.assertEqual(otel._normalize_otlp_endpoint("http://collector:4318/v1", "/v1/traces"), "http://collector:4318/v1/traces")
        self.assertEqual(
            otel._normalize_otlp_endpoint("http://collector:4318/v1/traces", "/v1/traces"),
            "http://collector:4318/v1/traces",
        )

    def test_prometheus_labels_fill_unknowns(self) -> None:
        self.assertEqual(
            otel._prom_labels(project_id="", tool=" ", status="success"),
            {"project": "unknown", "tool": "unknown", "status": "success"},
        )

    def test_recorders_are_noops_when_disabled(self) -> None:
        with observability.start_span("sessionlens.test", {"session.id": "s1"}) as span:
            self.assertIsNone(span)
        observability.record_reconstruction("session", "success", 12.5, project_id="-repo")
        observability.record_parse_diagnostic("records", "invalid JSON", count=0)
        observability.record_tool_result("Read", "success", duration_ms=3.0)
        observability.record_token_cost(project_id="-repo", model="claude-sonnet-4-5", token_input=10, token_output=5, cost_usd=None)


if __name__ == "__main__":
    unittest.main()
