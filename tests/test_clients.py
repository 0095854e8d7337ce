import unittest

from s3_explorer.clients import ClientFactory, is_localstack_endpoint, normalize_region
from s3_explorer.errors import SessionTokenError
from s3_explorer.models import ConnectionDescriptor


class RecordingBuilder:
    def __init__(self):
        self.calls = []

    def __call__(self, service_name, **kwargs):
        self.calls.append(kwargs)
        return object()


class EndpointDetectionTests(unittest.TestCase):
    def test_localhost_and_loopback_are_localstack(self):
        self.assertTrue(is_localstack_endpoint("http://localhost:4566"))
        self.assertTrue(is_localstack_endpoint("http://127.0.0.1:9000"))
        self.assertTrue(is_localstack_endpoint("http://localstack.internal:4566"))

    def test_aws_endpoints_are_not_localstack(self):
        self.assertFalse(is_localstack_endpoint("https://s3.amazonaws.com"))
        self.assertFalse(is_localstack_endpoint(""))
        self.assertFalse(is_localstack_endpoint(None))

    def test_normalize_region_handles_legacy_aliases(self):
        self.assertEqual("us-east-1", normalize_region(None))
        self.assertEqual("us-east-1", normalize_region(""))
        self.assertEqual("eu-west-1", normalize_region("EU"))
        self.assertEqual("ap-south-1", normalize_region("ap-south-1"))


class ClientFactoryTests(unittest.TestCase):
    def test_clients_are_cached_per_descriptor(self):
        builder = RecordingBuilder()
        factory = ClientFactory(builder)
        descriptor = ConnectionDescriptor(region="us-east-1", access_key_id="a", secret_access_key="b")

        first = factory.get(descriptor)
        second = factory.get(ConnectionDescriptor(region="us-east-1", access_key_id="a", secret_access_key="b"))
        other = factory.get(descriptor.with_region("eu-west-1"))

        self.assertIs(first, second)
        self.assertIsNot(first, other)
        self.assertEqual(2, len(builder.calls))

    def test_localstack_gets_endpoint_and_path_style(self):
        builder = RecordingBuilder()
        factory = ClientFactory(builder)

        factory.get(ConnectionDescriptor(region="us-east-1", endpoint="http://localhost:4566"))

        call = builder.calls[0]
        self.assertEqual("http://localhost:4566", call["endpoint_url"])
        self.assertEqual("path", call["config"].s3["addressing_style"])

    def test_aws_uses_default_resolution_and_credential_chain(self):
        builder = RecordingBuilder()
        factory = ClientFactory(builder, default_region="eu-central-1")

        factory.get(ConnectionDescriptor(endpoint="https://s3.amazonaws.com"))

        call = builder.calls[0]
        self.assertIsNone(call["endpoint_url"])
        self.assertEqual("eu-central-1", call["region_name"])
        self.assertIsNone(call["aws_access_key_id"])
        self.assertIsNone(call["aws_secret_access_key"])
        self.assertIsNone(call["aws_session_token"])

    def test_clear_drops_cached_clients(self):
        builder = RecordingBuilder()
        factory = ClientFactory(builder)
        descriptor = ConnectionDescriptor(region="us-east-1")

        factory.get(descriptor)
        factory.clear()
        factory.get(descriptor)

        self.assertEqual(2, len(builder.calls))


class ConnectionDescriptorTests(unittest.TestCase):
    def test_header_round_trip_keeps_session_token(self):
        descriptor = ConnectionDescriptor(
            region="us-west-2",
            endpoint="http://localhost:4566",
            access_key_id="ak",
            secret_access_key="sk",
            session_token="st",
        )

        self.assertEqual(descriptor, ConnectionDescriptor.from_header(descriptor.to_header()))

    def test_cache_key_depends_on_session_token(self):
        plain = ConnectionDescriptor(region="us-east-1", access_key_id="a", secret_access_key="b")

        self.assertNotEqual(plain.cache_key(), ConnectionDescriptor(
            region="us-east-1", access_key_id="a", secret_access_key="b", session_token="t"
        ).cache_key())

    def test_from_header_rejects_malformed_values(self):
        for raw in (None, "", "not json", "[1, 2]", 42):
            with self.subTest(raw=raw):
                with self.assertRaises(SessionTokenError):
                    ConnectionDescriptor.from_header(raw)


if __name__ == "__main__":
    unittest.main()
