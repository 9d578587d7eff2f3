"""Time-series aggregation for analytics dashboards."""

from rehab_progress.analytics.timeseries import Bucket, Granularity, SeriesResult, bucket

__all__ = ["Bucket", "Granularity", "SeriesResult", "bucket"]
