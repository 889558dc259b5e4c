import redis

from opentelemetry import trace
from opentelemetry.test.test_base import TestBase
from prometheus_client import REGISTRY

from redistrace.clients.redis import ACTIVE_REQUESTS
from redistrace.clients.redis import LATENCY_SECONDS
from redistrace.clients.redis import RedisClient
from redistrace.clients.redis import REQUESTS_TOTAL
from redistrace.clients.redis import VALUE_SIZE_BYTES
from redistrace.lib import config
from redistrace.lib.tracing import with_attributes

from . import get_endpoint_or_skip_container


redis_endpoint = get_endpoint_or_skip_container("redis", 6379)
redis_url = f"redis://{redis_endpoint}/0"


class RedisIntegrationTests(TestBase):
    def setUp(self):
        super().setUp()
        self.tracer = self.tracer_provider.get_tracer(__name__)
        self.app_config = {
            "redis.url": redis_url,
            "redis.tracing.db_statement": "raw",
            "redis.tracing.record_value_size": "true",
            "redis.tracing.peer_service": "integration-redis",
        }

    def tearDown(self):
        redis.Redis.from_url(redis_url).flushall()

        LATENCY_SECONDS.clear()
        REQUESTS_TOTAL.clear()
        ACTIVE_REQUESTS.clear()
        VALUE_SIZE_BYTES.clear()

        super().tearDown()

    def make_client(self, **kwargs):
        parsed = config.parse_config(
            self.app_config, {"redis": RedisClient(tracer=self.tracer, **kwargs)}
        )
        return parsed.redis.make_object_for_context("redis")

    def test_simple_command(self):
        client = self.make_client()

        with self.tracer.start_as_current_span("test_simple_command"):
            result = client.ping()

        self.assertTrue(result)

        finished = self.get_finished_spans()
        span = finished.by_name("PING")
        self.assertEqual(span.kind, trace.SpanKind.CLIENT)
        self.assertIsNotNone(span.parent)
        self.assertTrue(span.status.is_ok)
        self.assertEqual(span.attributes["db.system"], "redis")
        self.assertEqual(span.attributes["net.peer.port"], redis_endpoint.address.port)
        self.assertEqual(span.attributes["peer.service"], "integration-redis")
        self.assertEqual(span.attributes["db.statement"], "PING")

    def test_value_sizes(self):
        client = self.make_client()

        client.set("K", "xyz")
        self.assertEqual(client.get("K"), b"xyz")

        set_span, get_span = self.get_finished_spans()
        self.assertEqual(set_span.attributes["db.statement"], "SET K xyz")
        self.assertEqual(set_span.attributes["db.set_value_size_bytes"], 3)
        self.assertEqual(get_span.attributes["db.retrieved_value_size_bytes"], 3)

    def test_error(self):
        client = self.make_client()

        with self.assertRaises(redis.ResponseError):
            client.execute_command("crazycommand")

        span = self.get_finished_spans()[0]
        self.assertEqual(span.name, "CRAZYCOMMAND")
        self.assertFalse(span.status.is_ok)

    def test_pipeline(self):
        client = self.make_client()

        with client.pipeline(transaction=False) as pipeline:
            pipeline.set("v1", "0")
            pipeline.incr("v1")
            pipeline.get("v1")
            result = pipeline.execute()

        self.assertEqual(result, [True, 1, b"1"])

        span = self.get_finished_spans()[0]
        self.assertEqual(span.name, "PIPELINED")
        self.assertEqual(span.attributes["db.statement"], "SET v1 0\nINCRBY v1 1\nGET v1")
        self.assertEqual(span.attributes["db.set_value_size_bytes"], 1)
        self.assertEqual(span.attributes["db.retrieved_value_size_bytes"], 1)

    def test_transaction(self):
        client = self.make_client()

        with client.pipeline(transaction=True) as pipeline:
            pipeline.set("v1", "0")
            pipeline.incr("v1")
            pipeline.get("v1")
            result = pipeline.execute()

        self.assertEqual(result, [True, 1, b"1"])

        span = self.get_finished_spans()[0]
        self.assertEqual(span.name, "PIPELINED")
        self.assertEqual(span.attributes["db.statement"], "SET v1 0\nINCRBY v1 1\nGET v1")
        self.assertEqual(span.attributes["db.set_value_size_bytes"], 1)
        self.assertEqual(span.attributes["db.retrieved_value_size_bytes"], 1)

    def test_context_attributes(self):
        client = self.make_client()

        with with_attributes({"app.feature": "checkout"}):
            client.get("cart")

        span = self.get_finished_spans()[0]
        self.assertEqual(span.attributes["app.feature"], "checkout")

    def test_metrics(self):
        client_name = "redisclient"
        client = self.make_client(client_name=client_name)

        client.set("prometheus", "rocks")

        expected_labels = {
            "redis_client_name": client_name,
            "redis_type": "standalone",
            "redis_command": "SET",
            "redis_database": "0",
        }
        request_labels = {**expected_labels, "redis_success": "true"}
        assert (
            REGISTRY.get_sample_value(f"{REQUESTS_TOTAL._name}_total", request_labels) == 1.0
        ), "Unexpected value for REQUESTS_TOTAL metric. Expected one 'set' command"
        assert (
            REGISTRY.get_sample_value(
                f"{LATENCY_SECONDS._name}_bucket", {**request_labels, "le": "+Inf"}
            )
            == 1.0
        ), "Expected one 'set' latency request"
        assert (
            REGISTRY.get_sample_value(ACTIVE_REQUESTS._name, expected_labels) == 0.0
        ), "Should have 0 (and not None) active requests"
