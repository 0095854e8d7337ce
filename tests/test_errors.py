import unittest

from botocore.exceptions import ClientError, EndpointConnectionError

from s3_explorer.errors import (
    ErrorKind,
    S3ExplorerError,
    SessionTokenError,
    ValidationError,
    classify_error,
    error_code,
    error_message,
)


def client_error(code, message, status=400, operation="GetBucketPolicy"):
    return ClientError(
        {"Error": {"Code": code, "Message": message}, "ResponseMetadata": {"HTTPStatusCode": status}},
        operation,
    )


class ClassifyErrorTests(unittest.TestCase):
    def test_localstack_deserialization_quirk_is_soft(self):
        exc = client_error("InternalError", "Deserialization error: char '{' is not expected", status=500)

        self.assertEqual(ErrorKind.SOFT, classify_error(exc))

    def test_missing_configuration_is_absent(self):
        for code in ("NoSuchBucketPolicy", "NoSuchCORSConfiguration", "NoSuchTagSet"):
            with self.subTest(code=code):
                self.assertEqual(ErrorKind.ABSENT, classify_error(client_error(code, "nothing here", 404)))

    def test_missing_key_is_not_treated_as_absent(self):
        self.assertEqual(ErrorKind.CLIENT, classify_error(client_error("NoSuchKey", "No such key", 404)))

    def test_service_status_decides_client_or_server(self):
        self.assertEqual(ErrorKind.CLIENT, classify_error(client_error("AccessDenied", "denied", 403)))
        self.assertEqual(ErrorKind.SERVER, classify_error(client_error("InternalError", "boom", 500)))

    def test_local_errors(self):
        self.assertEqual(ErrorKind.CLIENT, classify_error(ValidationError("Missing bucket")))
        self.assertEqual(ErrorKind.SERVER, classify_error(S3ExplorerError("broken")))
        self.assertEqual(
            ErrorKind.CLIENT,
            classify_error(EndpointConnectionError(endpoint_url="http://localhost:1")),
        )
        self.assertEqual(ErrorKind.SERVER, classify_error(RuntimeError("unexpected")))


class ErrorDetailsTests(unittest.TestCase):
    def test_client_error_code_and_message_are_verbatim(self):
        exc = client_error("BucketAlreadyExists", "The requested bucket name is not available", 409)

        self.assertEqual("BucketAlreadyExists", error_code(exc))
        self.assertEqual("The requested bucket name is not available", error_message(exc))

    def test_explorer_error_codes(self):
        self.assertEqual("BadRequest", error_code(ValidationError("x")))
        self.assertEqual("InvalidSessionToken", error_code(SessionTokenError("x")))
        self.assertEqual(400, SessionTokenError("x").status_code)
        self.assertEqual("Conflict", error_code(S3ExplorerError("x", code="Conflict", status_code=409)))


if __name__ == "__main__":
    unittest.main()
