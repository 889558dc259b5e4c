import unittest

from types import MappingProxyType

from redistrace.lib.tracing import context_attributes
from redistrace.lib.tracing import StatementPolicy
from redistrace.lib.tracing import TracingConfig
from redistrace.lib.tracing import with_attributes


class TracingConfigTests(unittest.TestCase):
    def test_defaults(self):
        tracing_config = TracingConfig()

        self.assertIs(tracing_config.db_statement, StatementPolicy.OBFUSCATE)
        self.assertFalse(tracing_config.record_value_size)
        self.assertIsNone(tracing_config.peer_service)
        self.assertTrue(tracing_config.trace_root_spans)
        self.assertEqual(dict(tracing_config.attributes), {})
        self.assertEqual(tracing_config.set_value_size_commands, frozenset(["SET"]))
        self.assertEqual(tracing_config.retrieved_value_size_commands, frozenset(["GET", "MGET"]))
        self.assertEqual(tracing_config.max_statement_length, 500)

    def test_immutable(self):
        tracing_config = TracingConfig()

        with self.assertRaises(AttributeError):
            tracing_config.record_value_size = True
        with self.assertRaises(TypeError):
            tracing_config.attributes["app.team"] = "storage"

    def test_replace(self):
        tracing_config = TracingConfig()._replace(db_statement=StatementPolicy.RAW)
        self.assertIs(tracing_config.db_statement, StatementPolicy.RAW)
        self.assertIsInstance(tracing_config.attributes, MappingProxyType)


class WithAttributesTests(unittest.TestCase):
    def test_no_attributes(self):
        self.assertEqual(context_attributes(), {})

    def test_attributes_are_scoped(self):
        with with_attributes({"app.feature": "checkout"}):
            self.assertEqual(context_attributes(), {"app.feature": "checkout"})
        self.assertEqual(context_attributes(), {})

    def test_nested(self):
        with with_attributes({"app.feature": "checkout", "app.team": "payments"}):
            with with_attributes({"app.feature": "refund"}):
                self.assertEqual(
                    context_attributes(), {"app.feature": "refund", "app.team": "payments"}
                )
            self.assertEqual(
                context_attributes(), {"app.feature": "checkout", "app.team": "payments"}
            )

    def test_restored_on_error(self):
        with self.assertRaises(ValueError):
            with with_attributes({"app.feature": "checkout"}):
                raise ValueError
        self.assertEqual(context_attributes(), {})

    def test_returned_dict_is_a_copy(self):
        with with_attributes({"app.feature": "checkout"}):
            context_attributes()["app.feature"] = "mutated"
            self.assertEqual(context_attributes(), {"app.feature": "checkout"})
