from __future__ import annotations
"""Bucket and object metadata documents: ACL, policy, CORS and tags."""
import copy
import json
import logging
from typing import Any, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .clients import ClientFactory
from .errors import ErrorKind, S3ExplorerError, ValidationError, classify_error, error_message
from .models import ConnectionDescriptor
from .services import strip_metadata

LOGGER = logging.getLogger(__name__)

POLICY_VERSION = "2012-10-17"

POLICY_PRESETS: dict[str, dict[str, Any]] = {
    "private": {
        "Version": POLICY_VERSION,
        "Statement": [],
    },
    "public-read": {
        "Version": POLICY_VERSION,
        "Statement": [
            {
                "Sid": "PublicReadGetObject",
                "Effect": "Allow",
                "Principal": "*",
                "Action": ["s3:GetObject"],
                "Resource": ["arn:aws:s3:::${bucket}/*"],
            },
            {
                "Sid": "PublicReadListBucket",
                "Effect": "Allow",
                "Principal": "*",
                "Action": ["s3:ListBucket"],
                "Resource": ["arn:aws:s3:::${bucket}"],
            },
        ],
    },
    "authenticated-read": {
        "Version": POLICY_VERSION,
        "Statement": [
            {
                "Sid": "AllowAuthenticatedRead",
                "Effect": "Allow",
                "Principal": {"AWS": "*"},
                "Action": ["s3:GetObject"],
                "Resource": ["arn:aws:s3:::${bucket}/*"],
                "Condition": {"StringNotEquals": {"aws:userid": "anonymous"}},
            }
        ],
    },
}


def policy_preset(name: str, bucket: str) -> dict[str, Any]:
    """Return the named preset with ``${bucket}`` substituted."""

    try:
        template = POLICY_PRESETS[name]
    except KeyError:
        raise ValueError(f"Unknown policy preset '{name}'") from None
    rendered = json.dumps(template).replace("${bucket}", bucket)
    return json.loads(rendered)


def check_policy_document(policy: Any) -> Optional[str]:
    """Best-effort structural check of a bucket policy.

    Returns a human readable problem, or ``None`` when the document looks
    acceptable. Semantic validation is left to S3.
    """
    if not isinstance(policy, dict):
        return "Policy must be a JSON object"
    if policy.get("Version") != POLICY_VERSION:
        return f'Policy Version must be "{POLICY_VERSION}"'
    statements = policy.get("Statement")
    if not isinstance(statements, list):
        return "Policy must contain a Statement array"
    for index, statement in enumerate(statements, start=1):
        if not isinstance(statement, dict) or not statement:
            return f"Statement #{index} is not an object"
        if statement.get("Effect") not in ("Allow", "Deny"):
            return f"Statement #{index} missing valid Effect"
        if not statement.get("Action"):
            return f"Statement #{index} missing Action"
        if not statement.get("Resource"):
            return f"Statement #{index} missing Resource"
        if statement["Effect"] == "Allow" and not statement.get("Principal"):
            return f"Statement #{index} missing Principal"
    return None


def parse_policy(policy: Any) -> dict[str, Any]:
    if isinstance(policy, str):
        try:
            policy = json.loads(policy)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Policy is not valid JSON: {exc.msg}") from exc
    problem = check_policy_document(policy)
    if problem:
        raise ValidationError(problem)
    return policy


def parse_cors_rules(cors: Any) -> list[dict[str, Any]]:
    if isinstance(cors, str):
        try:
            cors = json.loads(cors)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"CORS rules are not valid JSON: {exc.msg}") from exc
    if not isinstance(cors, list):
        raise ValidationError("CORS rules must be a list")
    return cors


def build_grants(grants: list[dict[str, Any]]) -> list[dict[str, Any]]:
    built = []
    for grant in grants:
        source = grant.get("Grantee") or {}
        grantee: dict[str, str] = {"Type": source.get("Type")}
        if source.get("Type") == "Group" and source.get("URI"):
            grantee["URI"] = source["URI"]
        if source.get("Type") == "CanonicalUser" and source.get("ID"):
            grantee["ID"] = source["ID"]
        if source.get("DisplayName"):
            grantee["DisplayName"] = source["DisplayName"]
        built.append({"Grantee": grantee, "Permission": grant.get("Permission")})
    return built


class S3Inspector:
    """Reads and writes the metadata documents attached to buckets and objects."""

    def __init__(self, client_factory: ClientFactory | None = None):
        self._clients = client_factory or ClientFactory()

    def get_acl(self, descriptor: ConnectionDescriptor, *, bucket: str, key: str | None = None) -> dict:
        client = self._clients.get(descriptor)
        if key:
            return strip_metadata(client.get_object_acl(Bucket=bucket, Key=key))
        return strip_metadata(client.get_bucket_acl(Bucket=bucket))

    def put_acl(
        self,
        descriptor: ConnectionDescriptor,
        *,
        bucket: str,
        key: str | None = None,
        canned: str | None = None,
        grants: Any = None,
        owner: Any = None,
    ) -> None:
        """Apply a canned ACL or an explicit grant list."""

        params: dict[str, Any] = {"Bucket": bucket}
        if key:
            params["Key"] = key
        if canned:
            params["ACL"] = canned
        else:
            if not isinstance(grants, list) or not grants:
                raise ValidationError("Cannot save ACL with no grants.")
            if not all(isinstance(grant, dict) for grant in grants):
                raise ValidationError("Each ACL grant must be an object.")
            if not isinstance(owner, dict) or not owner.get("ID"):
                raise ValidationError("Missing owner information for custom ACL.")
            params["AccessControlPolicy"] = {"Grants": build_grants(grants), "Owner": owner}

        client = self._clients.get(descriptor)
        if key:
            client.put_object_acl(**params)
        else:
            client.put_bucket_acl(**params)

    def get_policy(self, descriptor: ConnectionDescriptor, *, bucket: str) -> dict:
        client = self._clients.get(descriptor)
        try:
            response = client.get_bucket_policy(Bucket=bucket)
        except ClientError as exc:
            if classify_error(exc) is ErrorKind.ABSENT:
                return {"Policy": {}}
            raise
        return {"Policy": json.loads(response.get("Policy") or "{}")}

    def put_policy(self, descriptor: ConnectionDescriptor, *, bucket: str, policy: Any) -> None:
        document = parse_policy(policy)
        client = self._clients.get(descriptor)
        client.put_bucket_policy(Bucket=bucket, Policy=json.dumps(document))

    def validate_policy(self, descriptor: ConnectionDescriptor, *, bucket: str, policy: Any) -> None:
        """Ask S3 whether it accepts ``policy`` without keeping it.

        The candidate is applied and then replaced by whatever policy was in
        place before (or removed when there was none). A failed restore is
        reported as a ``RestoreFailed`` error.
        """
        document = parse_policy(policy)
        previous = self.get_policy(descriptor, bucket=bucket)["Policy"]
        client = self._clients.get(descriptor)

        def restore():
            if previous:
                client.put_bucket_policy(Bucket=bucket, Policy=json.dumps(previous))
            else:
                client.delete_bucket_policy(Bucket=bucket)

        try:
            client.put_bucket_policy(Bucket=bucket, Policy=json.dumps(document))
        finally:
            self._restore(bucket, "policy", restore)

    def get_cors(self, descriptor: ConnectionDescriptor, *, bucket: str) -> dict:
        client = self._clients.get(descriptor)
        try:
            response = client.get_bucket_cors(Bucket=bucket)
        except ClientError as exc:
            if classify_error(exc) is ErrorKind.ABSENT:
                return {"CORSRules": []}
            raise
        rules = response.get("CORSRules")
        return {"CORSRules": rules if isinstance(rules, list) else []}

    def put_cors(self, descriptor: ConnectionDescriptor, *, bucket: str, cors: Any) -> Optional[str]:
        """Replace the CORS rules; an empty list clears the configuration.

        Returns a warning when LocalStack answered with one of its known
        deserialization quirks.
        """
        rules = parse_cors_rules(cors)
        if not rules:
            return self.delete_cors(descriptor, bucket=bucket)
        client = self._clients.get(descriptor)
        return self._soft(
            lambda: client.put_bucket_cors(Bucket=bucket, CORSConfiguration={"CORSRules": rules})
        )

    def delete_cors(self, descriptor: ConnectionDescriptor, *, bucket: str) -> Optional[str]:
        client = self._clients.get(descriptor)
        return self._soft(lambda: client.delete_bucket_cors(Bucket=bucket))

    def validate_cors(self, descriptor: ConnectionDescriptor, *, bucket: str, cors: Any) -> Optional[str]:
        rules = parse_cors_rules(cors)
        previous = self.get_cors(descriptor, bucket=bucket)["CORSRules"]
        client = self._clients.get(descriptor)

        def restore():
            if previous:
                rules_before = {"CORSRules": copy.deepcopy(previous)}
                self._soft(lambda: client.put_bucket_cors(Bucket=bucket, CORSConfiguration=rules_before))
            else:
                self._soft(lambda: client.delete_bucket_cors(Bucket=bucket))

        try:
            warning = self._soft(
                lambda: client.put_bucket_cors(Bucket=bucket, CORSConfiguration={"CORSRules": rules})
            )
        finally:
            self._restore(bucket, "CORS configuration", restore)
        return warning

    def get_tags(self, descriptor: ConnectionDescriptor, *, bucket: str, key: str | None = None) -> dict:
        client = self._clients.get(descriptor)
        try:
            if key:
                response = client.get_object_tagging(Bucket=bucket, Key=key)
            else:
                response = client.get_bucket_tagging(Bucket=bucket)
        except ClientError as exc:
            if classify_error(exc) is ErrorKind.ABSENT:
                return {"TagSet": []}
            raise
        return strip_metadata(response)

    def put_tags(
        self,
        descriptor: ConnectionDescriptor,
        *,
        bucket: str,
        tags: Any,
        key: str | None = None,
    ) -> None:
        if not isinstance(tags, list):
            raise ValidationError("Missing or invalid bucket/tags")
        tag_set = [{"Key": tag.get("Key"), "Value": tag.get("Value")} for tag in tags if isinstance(tag, dict)]
        client = self._clients.get(descriptor)
        if key:
            client.put_object_tagging(Bucket=bucket, Key=key, Tagging={"TagSet": tag_set})
        else:
            client.put_bucket_tagging(Bucket=bucket, Tagging={"TagSet": tag_set})

    def _restore(self, bucket: str, document: str, operation) -> None:
        try:
            operation()
        except (ClientError, BotoCoreError) as exc:
            LOGGER.error("Could not restore the %s of '%s' after validation: %s", document, bucket, exc)
            raise S3ExplorerError(
                f"Validation changed the {document} of '{bucket}' and restoring it failed: {error_message(exc)}",
                code="RestoreFailed",
            ) from exc

    def _soft(self, operation) -> Optional[str]:
        try:
            operation()
        except Exception as exc:
            if classify_error(exc) is ErrorKind.SOFT:
                LOGGER.warning("LocalStack warning suppressed: %s", exc)
                return error_message(exc)
            raise
        return None
