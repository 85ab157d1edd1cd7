"""
Optional export of run samples to InfluxDB v2.

When ``INFLUXDB_ENABLED`` is set the run's samples are written at test
stop, one point per sample: the metric name is the measurement, sample
tags plus ``test_type`` become point tags and the value is the single
``value`` field.  Dashboards can then slice latency by request name or
executor over the course of the run.

Export problems are logged and never fail the test; the thresholds are
the only pass/fail signal.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import urllib3
from influxdb_client import InfluxDBClient, Point, WritePrecision
from influxdb_client.client.write_api import SYNCHRONOUS
from influxdb_client.rest import ApiException

from performance.config import InfluxDBSettings
from performance.lib.metrics import MetricsRegistry, Sample

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5000


def sample_to_point(sample: Sample, *, test_type: str) -> Point:
    """Convert one sample into an InfluxDB point with millisecond precision."""
    point = Point(sample.metric).tag("test_type", test_type)
    for key, value in sample.tags:
        point = point.tag(key, value)
    return point.field("value", float(sample.value)).time(
        int(sample.timestamp * 1000), write_precision=WritePrecision.MS
    )


def export_registry(
    registry: MetricsRegistry,
    influx: InfluxDBSettings,
    *,
    test_type: str,
    batch_size: int = DEFAULT_BATCH_SIZE,
    client_factory: Callable[..., Any] = InfluxDBClient,
) -> int:
    """
    Write every sample in ``registry`` to the configured bucket.

    Args:
        registry: Source of the samples.
        influx: Connection settings.
        test_type: Value of the ``test_type`` tag on every point.
        batch_size: Points per write call.
        client_factory: Builds the client; tests pass a fake.

    Returns:
        Number of points written before the export finished or failed.
    """
    samples = list(registry.all_samples())
    if not samples:
        return 0

    written = 0
    try:
        with client_factory(url=influx.url, token=influx.token, org=influx.organization) as client:
            write_api = client.write_api(write_options=SYNCHRONOUS)
            for start in range(0, len(samples), batch_size):
                batch = [
                    sample_to_point(sample, test_type=test_type)
                    for sample in samples[start : start + batch_size]
                ]
                write_api.write(bucket=influx.bucket, org=influx.organization, record=batch)
                written += len(batch)
    except (ApiException, urllib3.exceptions.HTTPError, OSError) as exc:
        logger.error("InfluxDB export to %s failed after %d points: %s", influx.url, written, exc)
        return written

    logger.info("Exported %d samples to InfluxDB bucket %s", written, influx.bucket)
    return written
