"""
Shared test fixtures — in-memory AWS fakes and module trees.

FakeS3 and FakeDynamoDB implement the subset of the boto3 client API
terrastack calls, raising real ``botocore`` ClientError objects with
the codes AWS uses. Both are thread-safe so lock tests can race them.
"""

from __future__ import annotations

import copy
import itertools
import textwrap
import threading
from pathlib import Path
from typing import Any, Callable

import pytest
from botocore.exceptions import ClientError, WaiterError

from terrastack.adapters.mock import MockRunner
from terrastack.core.engine.pipeline import BackendFactory, ModulePipeline
from terrastack.core.reliability.retry import RetryPolicy


def client_error(code: str, operation: str, status: int = 400, message: str = "") -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": message or code},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


class FakeWaiter:
    def __init__(self, name: str, check: Callable[[dict[str, Any]], bool]):
        self._name = name
        self._check = check

    def wait(self, **kwargs: Any) -> None:
        if not self._check(kwargs):
            raise WaiterError(self._name, "Max attempts exceeded", {})


class _FailureInjection:
    """Queue exceptions to raise on the next calls of an operation."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self._failures: dict[str, list[Exception]] = {}

    def fail_next(self, operation: str, *errors: Exception) -> None:
        self._failures.setdefault(operation, []).extend(errors)

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        queued = self._failures.get(operation)
        if queued:
            raise queued.pop(0)

    def call_count(self, operation: str) -> int:
        return self.calls.count(operation)


# ── DynamoDB ────────────────────────────────────────────────────


class FakeDynamoDB(_FailureInjection):
    def __init__(self) -> None:
        super().__init__()
        self._lock = threading.Lock()
        self.tables: dict[str, dict[str, Any]] = {}
        # Simulates another process creating the table between describe and create
        self.create_race = False

    def _table(self, name: str, operation: str) -> dict[str, Any]:
        table = self.tables.get(name)
        if table is None:
            raise client_error(
                "ResourceNotFoundException", operation, message=f"Requested resource not found: {name}"
            )
        return table

    def add_table(
        self,
        name: str,
        key_schema: list[dict[str, str]] | None = None,
        attribute_definitions: list[dict[str, str]] | None = None,
        status: str = "ACTIVE",
    ) -> None:
        self.tables[name] = {
            "TableName": name,
            "KeySchema": key_schema or [{"AttributeName": "StateFileId", "KeyType": "HASH"}],
            "AttributeDefinitions": attribute_definitions
            or [{"AttributeName": "StateFileId", "AttributeType": "S"}],
            "TableStatus": status,
            "items": {},
        }

    def _hash_key(self, table: dict[str, Any]) -> str:
        return table["KeySchema"][0]["AttributeName"]

    def describe_table(self, TableName: str) -> dict[str, Any]:
        with self._lock:
            self._enter("describe_table")
            table = self._table(TableName, "DescribeTable")
            return {"Table": {k: copy.deepcopy(v) for k, v in table.items() if k != "items"}}

    def create_table(self, TableName: str, AttributeDefinitions: list, KeySchema: list, **kwargs: Any) -> dict:
        with self._lock:
            self._enter("create_table")
            if self.create_race and TableName not in self.tables:
                self.add_table(TableName, KeySchema, AttributeDefinitions)
            if TableName in self.tables:
                raise client_error("ResourceInUseException", "CreateTable", message=f"Table already exists: {TableName}")
            self.add_table(TableName, KeySchema, AttributeDefinitions, status="CREATING")
            return {"TableDescription": {"TableName": TableName, "TableStatus": "CREATING"}}

    def delete_table(self, TableName: str) -> dict:
        with self._lock:
            self._enter("delete_table")
            self._table(TableName, "DeleteTable")
            del self.tables[TableName]
            return {}

    def put_item(
        self,
        TableName: str,
        Item: dict[str, Any],
        ConditionExpression: str | None = None,
        ExpressionAttributeNames: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> dict:
        with self._lock:
            self._enter("put_item")
            table = self._table(TableName, "PutItem")
            key = Item[self._hash_key(table)]["S"]
            if ConditionExpression and key in table["items"]:
                raise client_error(
                    "ConditionalCheckFailedException", "PutItem", message="The conditional request failed"
                )
            table["items"][key] = copy.deepcopy(Item)
            return {}

    def get_item(self, TableName: str, Key: dict[str, Any], **kwargs: Any) -> dict:
        with self._lock:
            self._enter("get_item")
            table = self._table(TableName, "GetItem")
            item = table["items"].get(Key[self._hash_key(table)]["S"])
            return {"Item": copy.deepcopy(item)} if item else {}

    def delete_item(
        self,
        TableName: str,
        Key: dict[str, Any],
        ConditionExpression: str | None = None,
        ExpressionAttributeNames: dict[str, str] | None = None,
        ExpressionAttributeValues: dict[str, Any] | None = None,
        ReturnValues: str | None = None,
    ) -> dict:
        with self._lock:
            self._enter("delete_item")
            table = self._table(TableName, "DeleteItem")
            key = Key[self._hash_key(table)]["S"]
            item = table["items"].get(key)

            if ConditionExpression:
                # Only "#name = :value" is used
                name = (ExpressionAttributeNames or {})["#holder"]
                expected = (ExpressionAttributeValues or {})[":holder"]
                if item is None or item.get(name) != expected:
                    raise client_error(
                        "ConditionalCheckFailedException", "DeleteItem", message="The conditional request failed"
                    )

            table["items"].pop(key, None)
            if ReturnValues == "ALL_OLD" and item:
                return {"Attributes": item}
            return {}

    def get_waiter(self, name: str) -> FakeWaiter:
        def table_exists(kwargs: dict[str, Any]) -> bool:
            table = self.tables.get(kwargs["TableName"])
            if table is None:
                return False
            table["TableStatus"] = "ACTIVE"
            return True

        checks = {
            "table_exists": table_exists,
            "table_not_exists": lambda kwargs: kwargs["TableName"] not in self.tables,
        }
        return FakeWaiter(name, checks[name])

    # ── Test helpers ────────────────────────────────────────────

    def lock_item(self, table_name: str, state_id: str) -> dict[str, Any] | None:
        table = self.tables.get(table_name)
        if table is None:
            return None
        return table["items"].get(state_id)


# ── S3 ──────────────────────────────────────────────────────────


class FakeS3(_FailureInjection):
    def __init__(self) -> None:
        super().__init__()
        self._lock = threading.Lock()
        self._version_ids = itertools.count(1)
        self.buckets: dict[str, dict[str, Any]] = {}
        # Owned by another account: create fails, head is forbidden
        self.foreign_buckets: set[str] = set()
        # Simulates another process creating the bucket between head and create
        self.create_race = False
        self.page_size = 1000
        self.delete_errors: list[dict[str, str]] = []

    def add_bucket(self, name: str, versioning: str | None = "Enabled", region: str = "us-east-1") -> None:
        self.buckets[name] = {
            "region": region,
            "versioning": versioning,
            "encryption": None,
            "versions": [],
        }

    def put_versions(self, bucket: str, key: str, count: int = 1, delete_marker: bool = False) -> None:
        for _ in range(count):
            self.buckets[bucket]["versions"].append({
                "Key": key,
                "VersionId": f"v{next(self._version_ids)}",
                "IsDeleteMarker": False,
            })
        if delete_marker:
            self.buckets[bucket]["versions"].append({
                "Key": key,
                "VersionId": f"v{next(self._version_ids)}",
                "IsDeleteMarker": True,
            })

    def _bucket(self, name: str, operation: str) -> dict[str, Any]:
        bucket = self.buckets.get(name)
        if bucket is None:
            raise client_error("NoSuchBucket", operation, status=404, message="The specified bucket does not exist")
        return bucket

    def head_bucket(self, Bucket: str) -> dict:
        with self._lock:
            self._enter("head_bucket")
            if Bucket in self.foreign_buckets:
                raise client_error("403", "HeadBucket", status=403, message="Forbidden")
            if Bucket not in self.buckets:
                raise client_error("404", "HeadBucket", status=404, message="Not Found")
            return {}

    def create_bucket(self, Bucket: str, CreateBucketConfiguration: dict | None = None) -> dict:
        with self._lock:
            self._enter("create_bucket")
            if Bucket in self.foreign_buckets:
                raise client_error("BucketAlreadyExists", "CreateBucket", status=409)
            if self.create_race and Bucket not in self.buckets:
                self.add_bucket(Bucket)
            if Bucket in self.buckets:
                raise client_error("BucketAlreadyOwnedByYou", "CreateBucket", status=409)
            region = (CreateBucketConfiguration or {}).get("LocationConstraint", "us-east-1")
            self.add_bucket(Bucket, versioning=None, region=region)
            return {"Location": f"/{Bucket}"}

    def put_bucket_versioning(self, Bucket: str, VersioningConfiguration: dict) -> dict:
        with self._lock:
            self._enter("put_bucket_versioning")
            self._bucket(Bucket, "PutBucketVersioning")["versioning"] = VersioningConfiguration["Status"]
            return {}

    def get_bucket_versioning(self, Bucket: str) -> dict:
        with self._lock:
            self._enter("get_bucket_versioning")
            status = self._bucket(Bucket, "GetBucketVersioning")["versioning"]
            return {"Status": status} if status else {}

    def put_bucket_encryption(self, Bucket: str, ServerSideEncryptionConfiguration: dict) -> dict:
        with self._lock:
            self._enter("put_bucket_encryption")
            self._bucket(Bucket, "PutBucketEncryption")["encryption"] = ServerSideEncryptionConfiguration
            return {}

    def list_object_versions(
        self,
        Bucket: str,
        KeyMarker: str | None = None,
        VersionIdMarker: str | None = None,
    ) -> dict:
        with self._lock:
            self._enter("list_object_versions")
            entries = self._bucket(Bucket, "ListObjectVersions")["versions"]

            start = 0
            if KeyMarker is not None:
                for i, entry in enumerate(entries):
                    if entry["Key"] == KeyMarker and entry["VersionId"] == VersionIdMarker:
                        start = i + 1
                        break

            page = entries[start:start + self.page_size]
            truncated = start + self.page_size < len(entries)
            response: dict[str, Any] = {
                "Versions": [
                    {"Key": e["Key"], "VersionId": e["VersionId"]} for e in page if not e["IsDeleteMarker"]
                ],
                "DeleteMarkers": [
                    {"Key": e["Key"], "VersionId": e["VersionId"]} for e in page if e["IsDeleteMarker"]
                ],
                "IsTruncated": truncated,
            }
            if truncated:
                response["NextKeyMarker"] = page[-1]["Key"]
                response["NextVersionIdMarker"] = page[-1]["VersionId"]
            return response

    def delete_objects(self, Bucket: str, Delete: dict) -> dict:
        with self._lock:
            self._enter("delete_objects")
            bucket = self._bucket(Bucket, "DeleteObjects")
            if self.delete_errors:
                return {"Errors": list(self.delete_errors)}
            wanted = {(o["Key"], o["VersionId"]) for o in Delete["Objects"]}
            bucket["versions"] = [
                e for e in bucket["versions"] if (e["Key"], e["VersionId"]) not in wanted
            ]
            return {}

    def delete_bucket(self, Bucket: str) -> dict:
        with self._lock:
            self._enter("delete_bucket")
            bucket = self._bucket(Bucket, "DeleteBucket")
            if bucket["versions"]:
                raise client_error("BucketNotEmpty", "DeleteBucket", status=409)
            del self.buckets[Bucket]
            return {}

    def get_waiter(self, name: str) -> FakeWaiter:
        checks = {
            "bucket_exists": lambda kwargs: kwargs["Bucket"] in self.buckets,
            "bucket_not_exists": lambda kwargs: kwargs["Bucket"] not in self.buckets,
        }
        return FakeWaiter(name, checks[name])


class FakeClients:
    """Stands in for AwsClientFactory."""

    def __init__(self, s3: FakeS3, dynamodb: FakeDynamoDB):
        self._s3 = s3
        self._dynamodb = dynamodb
        self.regions: list[str | None] = []

    def s3(self, region_name: str | None = None) -> FakeS3:
        self.regions.append(region_name)
        return self._s3

    def dynamodb(self, region_name: str | None = None) -> FakeDynamoDB:
        self.regions.append(region_name)
        return self._dynamodb


# ── Fixtures ────────────────────────────────────────────────────


@pytest.fixture
def fake_s3() -> FakeS3:
    return FakeS3()


@pytest.fixture
def fake_dynamodb() -> FakeDynamoDB:
    return FakeDynamoDB()


@pytest.fixture
def fake_clients(fake_s3: FakeS3, fake_dynamodb: FakeDynamoDB) -> FakeClients:
    return FakeClients(fake_s3, fake_dynamodb)


@pytest.fixture
def sleeps() -> list[float]:
    """Records every sleep requested by a retry policy or lock manager."""
    return []


@pytest.fixture
def fast_retry(sleeps: list[float]) -> RetryPolicy:
    """Retry policy that records its delays instead of sleeping."""
    return RetryPolicy(max_attempts=3, interval=0.01, sleep=sleeps.append)


@pytest.fixture
def mock_runner() -> MockRunner:
    return MockRunner()


@pytest.fixture
def backends(fake_clients: FakeClients, fast_retry: RetryPolicy) -> BackendFactory:
    return BackendFactory(fake_clients, retry_policy=fast_retry)


@pytest.fixture
def pipeline(mock_runner: MockRunner, backends: BackendFactory) -> ModulePipeline:
    return ModulePipeline(mock_runner, backends, holder="tester@ci", non_interactive=True)


@pytest.fixture
def write_module() -> Callable[..., Path]:
    """Create a module directory with a terrastack.yml and (optionally) a main.tf."""

    def _write(directory: Path, config: str = "", templates: bool = True) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        (directory / "terrastack.yml").write_text(textwrap.dedent(config))
        if templates:
            (directory / "main.tf").write_text('output "ok" { value = true }\n')
        return directory

    return _write


REMOTE_STATE_ROOT = """\
    remote_state:
      backend: s3
      bucket: __FILL_IN_BUCKET_NAME__
      key: ${path_relative_to_include()}/terraform.tfstate
      region: us-west-2
      lock_table: terrastack-locks-test
    lock:
      max_lock_retries: 0
      retry_interval: 0
"""


@pytest.fixture
def remote_state_root() -> str:
    """Root config shared by stack fixtures; bucket name is a placeholder."""
    return REMOTE_STATE_ROOT
