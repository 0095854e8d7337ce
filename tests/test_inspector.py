import json
import unittest

from botocore.exceptions import ClientError

from s3_explorer.clients import ClientFactory
from s3_explorer.errors import S3ExplorerError, ValidationError
from s3_explorer.inspector import S3Inspector, check_policy_document, policy_preset
from s3_explorer.models import ConnectionDescriptor

DESCRIPTOR = ConnectionDescriptor(region="us-east-1", endpoint="http://localhost:4566")


def absent(code, operation):
    return ClientError(
        {"Error": {"Code": code, "Message": "The configuration does not exist"}, "ResponseMetadata": {"HTTPStatusCode": 404}},
        operation,
    )


class FakeMetadataClient:
    def __init__(self, policy=None, cors=None):
        self.policy = policy
        self.cors = cors
        self.calls = []
        self.cors_error = None
        self.put_policy_errors = []
        self.delete_policy_error = None

    def get_bucket_policy(self, **kwargs):
        if self.policy is None:
            raise absent("NoSuchBucketPolicy", "GetBucketPolicy")
        return {"Policy": json.dumps(self.policy)}

    def put_bucket_policy(self, **kwargs):
        self.calls.append(("put_bucket_policy", json.loads(kwargs["Policy"])))
        if self.put_policy_errors:
            error = self.put_policy_errors.pop(0)
            if error:
                raise error

    def delete_bucket_policy(self, **kwargs):
        self.calls.append(("delete_bucket_policy", kwargs["Bucket"]))
        if self.delete_policy_error:
            raise self.delete_policy_error

    def get_bucket_cors(self, **kwargs):
        if self.cors is None:
            raise absent("NoSuchCORSConfiguration", "GetBucketCors")
        return {"CORSRules": self.cors}

    def put_bucket_cors(self, **kwargs):
        self.calls.append(("put_bucket_cors", kwargs["CORSConfiguration"]["CORSRules"]))
        if self.cors_error:
            raise self.cors_error

    def delete_bucket_cors(self, **kwargs):
        self.calls.append(("delete_bucket_cors", kwargs["Bucket"]))

    def get_bucket_tagging(self, **kwargs):
        raise absent("NoSuchTagSet", "GetBucketTagging")

    def put_bucket_tagging(self, **kwargs):
        self.calls.append(("put_bucket_tagging", kwargs["Tagging"]))

    def put_bucket_acl(self, **kwargs):
        self.calls.append(("put_bucket_acl", kwargs))

    def put_object_acl(self, **kwargs):
        self.calls.append(("put_object_acl", kwargs))


def make_inspector(client):
    return S3Inspector(ClientFactory(lambda *args, **kwargs: client))


class PolicyDocumentTests(unittest.TestCase):
    def test_preset_substitutes_bucket(self):
        policy = policy_preset("public-read", "docs")

        self.assertEqual(["arn:aws:s3:::docs/*"], policy["Statement"][0]["Resource"])
        self.assertIsNone(check_policy_document(policy))

    def test_structural_problems_are_reported(self):
        self.assertEqual("Policy must be a JSON object", check_policy_document([]))
        self.assertEqual('Policy Version must be "2012-10-17"', check_policy_document({"Version": "2008-10-17"}))
        self.assertEqual(
            "Policy must contain a Statement array",
            check_policy_document({"Version": "2012-10-17"}),
        )
        self.assertEqual(
            "Statement #1 missing Principal",
            check_policy_document(
                {
                    "Version": "2012-10-17",
                    "Statement": [{"Effect": "Allow", "Action": "s3:GetObject", "Resource": "*"}],
                }
            ),
        )

    def test_unknown_preset(self):
        with self.assertRaises(ValueError):
            policy_preset("everyone-writes", "docs")


class S3InspectorTests(unittest.TestCase):
    def test_missing_policy_is_empty_success_on_every_call(self):
        inspector = make_inspector(FakeMetadataClient())

        self.assertEqual({"Policy": {}}, inspector.get_policy(DESCRIPTOR, bucket="docs"))
        self.assertEqual({"Policy": {}}, inspector.get_policy(DESCRIPTOR, bucket="docs"))

    def test_put_policy_rejects_invalid_document_before_sdk_call(self):
        client = FakeMetadataClient()
        inspector = make_inspector(client)

        with self.assertRaises(ValidationError):
            inspector.put_policy(DESCRIPTOR, bucket="docs", policy='{"Version": "2012-10-17"')

        self.assertEqual([], client.calls)

    def test_validate_policy_removes_candidate_when_none_existed(self):
        client = FakeMetadataClient()
        inspector = make_inspector(client)
        candidate = policy_preset("public-read", "docs")

        inspector.validate_policy(DESCRIPTOR, bucket="docs", policy=candidate)

        self.assertEqual([("put_bucket_policy", candidate), ("delete_bucket_policy", "docs")], client.calls)

    def test_validate_policy_restores_previous_policy(self):
        previous = policy_preset("authenticated-read", "docs")
        client = FakeMetadataClient(policy=previous)
        inspector = make_inspector(client)
        candidate = policy_preset("public-read", "docs")

        inspector.validate_policy(DESCRIPTOR, bucket="docs", policy=candidate)

        self.assertEqual([("put_bucket_policy", candidate), ("put_bucket_policy", previous)], client.calls)

    def test_rejected_candidate_still_restores_previous_policy(self):
        previous = policy_preset("authenticated-read", "docs")
        client = FakeMetadataClient(policy=previous)
        client.put_policy_errors = [
            ClientError(
                {"Error": {"Code": "MalformedPolicy", "Message": "Invalid principal"}, "ResponseMetadata": {"HTTPStatusCode": 400}},
                "PutBucketPolicy",
            )
        ]
        inspector = make_inspector(client)
        candidate = policy_preset("public-read", "docs")

        with self.assertRaises(ClientError):
            inspector.validate_policy(DESCRIPTOR, bucket="docs", policy=candidate)

        self.assertEqual([("put_bucket_policy", candidate), ("put_bucket_policy", previous)], client.calls)

    def test_failed_policy_restore_is_reported(self):
        client = FakeMetadataClient()
        client.delete_policy_error = ClientError({"Error": {"Code": "AccessDenied", "Message": "Denied"}}, "DeleteBucketPolicy")
        inspector = make_inspector(client)

        with self.assertRaises(S3ExplorerError) as caught:
            inspector.validate_policy(DESCRIPTOR, bucket="docs", policy=policy_preset("public-read", "docs"))

        self.assertEqual("RestoreFailed", caught.exception.code)
        self.assertIn("Denied", caught.exception.message)

    def test_validate_cors_restore_tolerates_localstack_quirk(self):
        previous = [{"AllowedMethods": ["PUT"], "AllowedOrigins": ["https://example.com"]}]
        client = FakeMetadataClient(cors=previous)
        client.cors_error = ClientError(
            {"Error": {"Code": "InternalError", "Message": "char '{' is not expected"}},
            "PutBucketCors",
        )
        inspector = make_inspector(client)
        candidate = [{"AllowedMethods": ["GET"], "AllowedOrigins": ["*"]}]

        warning = inspector.validate_cors(DESCRIPTOR, bucket="docs", cors=candidate)

        self.assertEqual("char '{' is not expected", warning)
        self.assertEqual([("put_bucket_cors", candidate), ("put_bucket_cors", previous)], client.calls)

    def test_custom_acl_rejects_non_object_grants(self):
        client = FakeMetadataClient()
        inspector = make_inspector(client)

        with self.assertRaisesRegex(ValidationError, "grant must be an object"):
            inspector.put_acl(DESCRIPTOR, bucket="docs", grants=["oops"], owner={"ID": "x"})
        self.assertEqual([], client.calls)

    def test_empty_cors_list_issues_delete(self):
        client = FakeMetadataClient(cors=[{"AllowedMethods": ["GET"], "AllowedOrigins": ["*"]}])
        inspector = make_inspector(client)

        warning = inspector.put_cors(DESCRIPTOR, bucket="docs", cors=[])

        self.assertIsNone(warning)
        self.assertEqual([("delete_bucket_cors", "docs")], client.calls)

    def test_cors_accepts_json_string(self):
        client = FakeMetadataClient()
        inspector = make_inspector(client)
        rules = [{"AllowedMethods": ["GET"], "AllowedOrigins": ["*"]}]

        inspector.put_cors(DESCRIPTOR, bucket="docs", cors=json.dumps(rules))

        self.assertEqual([("put_bucket_cors", rules)], client.calls)

    def test_localstack_cors_quirk_becomes_warning(self):
        client = FakeMetadataClient()
        client.cors_error = ClientError(
            {"Error": {"Code": "InternalError", "Message": "char '{' is not expected"}},
            "PutBucketCors",
        )
        inspector = make_inspector(client)

        warning = inspector.put_cors(DESCRIPTOR, bucket="docs", cors=[{"AllowedMethods": ["GET"]}])

        self.assertEqual("char '{' is not expected", warning)

    def test_other_cors_errors_propagate(self):
        client = FakeMetadataClient()
        client.cors_error = ClientError(
            {"Error": {"Code": "MalformedXML", "Message": "bad"}, "ResponseMetadata": {"HTTPStatusCode": 400}},
            "PutBucketCors",
        )
        inspector = make_inspector(client)

        with self.assertRaises(ClientError):
            inspector.put_cors(DESCRIPTOR, bucket="docs", cors=[{"AllowedMethods": ["GET"]}])

    def test_missing_cors_and_tags_are_empty(self):
        inspector = make_inspector(FakeMetadataClient())

        self.assertEqual({"CORSRules": []}, inspector.get_cors(DESCRIPTOR, bucket="docs"))
        self.assertEqual({"TagSet": []}, inspector.get_tags(DESCRIPTOR, bucket="docs"))

    def test_put_tags_keeps_key_and_value_only(self):
        client = FakeMetadataClient()
        inspector = make_inspector(client)

        inspector.put_tags(DESCRIPTOR, bucket="docs", tags=[{"Key": "env", "Value": "dev", "extra": 1}])

        self.assertEqual([("put_bucket_tagging", {"TagSet": [{"Key": "env", "Value": "dev"}]})], client.calls)

    def test_canned_acl_on_object(self):
        client = FakeMetadataClient()
        inspector = make_inspector(client)

        inspector.put_acl(DESCRIPTOR, bucket="docs", key="a.txt", canned="public-read")

        self.assertEqual([("put_object_acl", {"Bucket": "docs", "Key": "a.txt", "ACL": "public-read"})], client.calls)

    def test_custom_acl_requires_grants_and_owner(self):
        inspector = make_inspector(FakeMetadataClient())

        with self.assertRaisesRegex(ValidationError, "no grants"):
            inspector.put_acl(DESCRIPTOR, bucket="docs", grants=[])
        with self.assertRaisesRegex(ValidationError, "owner"):
            inspector.put_acl(
                DESCRIPTOR,
                bucket="docs",
                grants=[{"Grantee": {"Type": "Group", "URI": "u"}, "Permission": "READ"}],
            )

    def test_custom_acl_builds_grantees(self):
        client = FakeMetadataClient()
        inspector = make_inspector(client)

        inspector.put_acl(
            DESCRIPTOR,
            bucket="docs",
            grants=[
                {"Grantee": {"Type": "CanonicalUser", "ID": "abc", "URI": "ignored"}, "Permission": "FULL_CONTROL"}
            ],
            owner={"ID": "abc"},
        )

        _, params = client.calls[0]
        self.assertEqual(
            {
                "Grants": [{"Grantee": {"Type": "CanonicalUser", "ID": "abc"}, "Permission": "FULL_CONTROL"}],
                "Owner": {"ID": "abc"},
            },
            params["AccessControlPolicy"],
        )


if __name__ == "__main__":
    unittest.main()
