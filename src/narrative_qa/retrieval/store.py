"""Blob-backed passage embedding store and its lazy reader."""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from typing import Any, Protocol

import structlog

from narrative_qa.errors import StoreUnavailable
from narrative_qa.types import PassageRecord

logger = structlog.get_logger(__name__)


class BlobStore(Protocol):
    """Minimal object store contract: list by prefix, get and put by key."""

    def list_keys(self, prefix: str) -> Iterator[str]:
        """Yield keys under ``prefix`` in store order."""

    def get(self, key: str) -> bytes:
        """Return the raw object body."""

    def put(self, key: str, data: bytes) -> None:
        """Create or replace an object."""


class InMemoryBlobStore:
    """Deterministic blob store used for tests and local prototyping."""

    def __init__(self) -> None:
        self._objects: dict[str, bytes] = {}

    def list_keys(self, prefix: str) -> Iterator[str]:
        for key in sorted(self._objects):
            if key.startswith(prefix):
                yield key

    def get(self, key: str) -> bytes:
        try:
            return self._objects[key]
        except KeyError as exc:
            raise StoreUnavailable(f"Object not found: {key}") from exc

    def put(self, key: str, data: bytes) -> None:
        self._objects[key] = data


class S3BlobStore:
    """S3 adapter keeping the same contract as `InMemoryBlobStore`.

    Any boto3/botocore failure during listing or reading surfaces as
    `StoreUnavailable`; retries are left to the caller.
    """

    def __init__(self, bucket: str, *, client: Any | None = None) -> None:
        import boto3
        from botocore.exceptions import BotoCoreError, ClientError

        self.bucket = bucket
        self._client = client or boto3.client("s3")
        self._errors = (BotoCoreError, ClientError)

    def list_keys(self, prefix: str) -> Iterator[str]:
        paginator = self._client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for item in page.get("Contents", []):
                    yield item["Key"]
        except self._errors as exc:
            raise StoreUnavailable(f"Listing s3://{self.bucket}/{prefix} failed: {exc}") from exc

    def get(self, key: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except self._errors as exc:
            raise StoreUnavailable(f"Reading s3://{self.bucket}/{key} failed: {exc}") from exc

    def put(self, key: str, data: bytes) -> None:
        try:
            self._client.put_object(
                Bucket=self.bucket, Key=key, Body=data, ContentType="application/json"
            )
        except self._errors as exc:
            raise StoreUnavailable(f"Writing s3://{self.bucket}/{key} failed: {exc}") from exc


def encode_record(record: PassageRecord) -> bytes:
    payload = {
        "id": record.id,
        "unitId": record.unit_id,
        "subUnitId": record.sub_unit_id,
        "sequenceId": record.sequence_id,
        "speaker": record.speaker,
        "textPrimary": record.text_primary,
        "textSecondary": record.text_secondary,
        "vector": list(record.vector),
        "tags": dict(record.tags),
    }
    return json.dumps(payload, ensure_ascii=False).encode("utf-8")


_REQUIRED_FIELDS = ("id", "unitId", "subUnitId", "sequenceId", "textPrimary")


def _required(payload: dict[str, Any], name: str) -> str:
    value = payload[name]
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValueError(f"Malformed passage record: {name} is {value!r}")
    text = str(value)
    if not text.strip():
        raise ValueError(f"Malformed passage record: {name} is blank")
    return text


def decode_record(data: bytes | str) -> PassageRecord:
    """Parse one serialized record.

    Integer sequence ids written by older ingestion runs are normalized to
    strings. A missing, null or blank required field raises `ValueError`.
    """

    payload = json.loads(data)
    try:
        fields = {name: _required(payload, name) for name in _REQUIRED_FIELDS}
        return PassageRecord(
            id=fields["id"],
            unit_id=fields["unitId"],
            sub_unit_id=fields["subUnitId"],
            sequence_id=fields["sequenceId"],
            text_primary=fields["textPrimary"],
            vector=tuple(float(value) for value in payload["vector"]),
            speaker=payload.get("speaker") or None,
            text_secondary=payload.get("textSecondary") or None,
            tags={str(k): str(v) for k, v in (payload.get("tags") or {}).items()},
        )
    except (KeyError, TypeError) as exc:
        raise ValueError(f"Malformed passage record: {exc}") from exc


def record_key(prefix: str, record: PassageRecord) -> str:
    return f"{prefix}/{record.unit_id}/{record.sub_unit_id}/{record.id}.json"


class EmbeddingStore:
    """Writes passage records in the layout `EmbeddingStoreReader` expects."""

    def __init__(self, blob_store: BlobStore, *, prefix: str = "embeddings") -> None:
        self.blob_store = blob_store
        self.prefix = prefix.rstrip("/")

    def put(self, record: PassageRecord) -> str:
        key = record_key(self.prefix, record)
        self.blob_store.put(key, encode_record(record))
        return key

    def put_many(self, records: Iterable[PassageRecord]) -> list[str]:
        return [self.put(record) for record in records]


class EmbeddingStoreReader:
    """Lazily reads passage records from blob storage.

    The `max_candidates` bound caps how many blobs are read per call, not how
    many records are returned: out-of-scope and undecodable blobs still count.
    """

    def __init__(self, blob_store: BlobStore, *, prefix: str = "embeddings") -> None:
        self.blob_store = blob_store
        self.prefix = prefix.rstrip("/")

    def iter_records(
        self,
        max_candidates: int,
        unit_scope: Iterable[str] | None = None,
    ) -> Iterator[PassageRecord]:
        scope = set(unit_scope or ())
        prefixes = (
            [f"{self.prefix}/{unit_id}/" for unit_id in sorted(scope)]
            if scope
            else [f"{self.prefix}/"]
        )

        read = 0
        for prefix in prefixes:
            for key in self.blob_store.list_keys(prefix):
                if read >= max_candidates:
                    logger.info("candidate_bound_reached", max_candidates=max_candidates)
                    return
                if not key.endswith(".json"):
                    continue
                read += 1
                raw = self.blob_store.get(key)
                try:
                    record = decode_record(raw)
                except ValueError as exc:
                    logger.warning("passage_record_skipped", key=key, error=str(exc))
                    continue
                if scope and record.unit_id not in scope:
                    continue
                yield record

    def load(
        self, max_candidates: int, unit_scope: Iterable[str] | None = None
    ) -> list[PassageRecord]:
        records = list(self.iter_records(max_candidates, unit_scope))
        logger.info(
            "passages_loaded",
            count=len(records),
            unit_scope=sorted(unit_scope) if unit_scope else None,
        )
        return records
