"""
api/serializers.py

Pydantic response models for the flow query API.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from ..query.models import AggregateBucket, FlowHit, SearchResult


class FlowResponse(BaseModel):
    id: int
    timestamp: datetime
    src_ip: str
    dst_ip: str
    src_port: int
    dst_port: int
    protocol: int
    packets: int
    bytes: int
    direction: str
    bytes_in: int
    bytes_out: int

    model_config = {"from_attributes": True}

    @classmethod
    def from_hit(cls, hit: FlowHit) -> "FlowResponse":
        return cls(
            id=hit.id,
            timestamp=hit.timestamp,
            src_ip=hit.src_ip,
            dst_ip=hit.dst_ip,
            src_port=hit.src_port,
            dst_port=hit.dst_port,
            protocol=hit.protocol,
            packets=hit.packets,
            bytes=hit.bytes,
            direction=hit.direction.value,
            bytes_in=hit.bytes_in,
            bytes_out=hit.bytes_out,
        )


class FlowSearchResponse(BaseModel):
    flows: list[FlowResponse]
    total_records: int
    total_bytes_in: int
    total_bytes_out: int
    total_traffic: int
    page: int
    limit: int
    total_pages: int
    match_kind: str

    @classmethod
    def from_result(cls, result: SearchResult) -> "FlowSearchResponse":
        return cls(
            flows=[FlowResponse.from_hit(h) for h in result.flows],
            total_records=result.total_records,
            total_bytes_in=result.total_bytes_in,
            total_bytes_out=result.total_bytes_out,
            total_traffic=result.total_traffic,
            page=result.page,
            limit=result.limit,
            total_pages=result.total_pages,
            match_kind=result.match_kind,
        )


class AggregateBucketResponse(BaseModel):
    time_period: datetime
    total_bytes: int
    bytes_in: int | None = None
    bytes_out: int | None = None

    @classmethod
    def from_bucket(cls, bucket: AggregateBucket) -> "AggregateBucketResponse":
        return cls(
            time_period=bucket.time_period,
            total_bytes=bucket.total_bytes,
            bytes_in=bucket.bytes_in,
            bytes_out=bucket.bytes_out,
        )


class IngestStatusResponse(BaseModel):
    enabled: bool
    directory: str
    scan_interval_seconds: int
    processed_files: int
    last_processed_file: str | None
    last_processed_at: str | None
    counters: dict[str, int]
