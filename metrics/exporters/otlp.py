"""Encoding of data point batches as OTLP export requests"""
from typing import Dict, List, Tuple
from opentelemetry.proto.metrics.v1 import metrics_pb2
from opentelemetry.proto.collector.metrics.v1 import metrics_service_pb2
from opentelemetry.proto.common.v1 import common_pb2
from opentelemetry.proto.resource.v1 import resource_pb2
from metrics.metadata import SOURCE_DIMENSION
from metrics.models import DataPoint, DataPointType


_TEMPORALITY = {
    DataPointType.COUNTER: metrics_pb2.AGGREGATION_TEMPORALITY_DELTA,
    DataPointType.CUMULATIVE_COUNTER: metrics_pb2.AGGREGATION_TEMPORALITY_CUMULATIVE,
}


class OTLPEncoder:
    """Builds ExportMetricsServiceRequest messages from data points"""

    def __init__(self, scope_name: str, scope_version: str, resource_attributes: Dict[str, str] = None):
        self.scope_name = scope_name
        self.scope_version = scope_version
        self.resource_attributes = dict(resource_attributes or {})

    def encode(self, data_points: List[DataPoint]) -> metrics_service_pb2.ExportMetricsServiceRequest:
        otlp_metrics = [
            self._create_otlp_metric(name, metric_type, points)
            for (name, metric_type), points in self._group_data_points(data_points).items()
        ]

        scope_metrics = metrics_pb2.ScopeMetrics(
            scope=common_pb2.InstrumentationScope(
                name=self.scope_name,
                version=self.scope_version
            ),
            metrics=otlp_metrics
        )

        resource_metrics = metrics_pb2.ResourceMetrics(
            resource=resource_pb2.Resource(attributes=self._to_attributes(self.resource_attributes)),
            scope_metrics=[scope_metrics]
        )

        return metrics_service_pb2.ExportMetricsServiceRequest(
            resource_metrics=[resource_metrics]
        )

    def _group_data_points(self, data_points: List[DataPoint]) -> Dict[Tuple[str, DataPointType], List[DataPoint]]:
        """Group data points by metric name and type, keeping first-seen order"""
        grouped = {}
        for data_point in data_points:
            grouped.setdefault((data_point.metric, data_point.metric_type), []).append(data_point)
        return grouped

    def _create_otlp_metric(self, name: str, metric_type: DataPointType,
                            points: List[DataPoint]) -> metrics_pb2.Metric:
        number_points = [self._create_number_point(point) for point in points]

        if metric_type == DataPointType.GAUGE:
            return metrics_pb2.Metric(
                name=name,
                gauge=metrics_pb2.Gauge(data_points=number_points)
            )

        return metrics_pb2.Metric(
            name=name,
            sum=metrics_pb2.Sum(
                data_points=number_points,
                aggregation_temporality=_TEMPORALITY[metric_type],
                # Counters can be decremented
                is_monotonic=all(point.value >= 0 for point in points)
            )
        )

    def _create_number_point(self, point: DataPoint) -> metrics_pb2.NumberDataPoint:
        attributes = dict(point.dimensions)
        attributes[SOURCE_DIMENSION] = point.source
        time_unix_nano = int(point.timestamp * 1_000_000_000)

        if isinstance(point.value, int) and not isinstance(point.value, bool):
            return metrics_pb2.NumberDataPoint(
                attributes=self._to_attributes(attributes),
                time_unix_nano=time_unix_nano,
                as_int=point.value
            )
        return metrics_pb2.NumberDataPoint(
            attributes=self._to_attributes(attributes),
            time_unix_nano=time_unix_nano,
            as_double=float(point.value)
        )

    def _to_attributes(self, labels: Dict[str, str]) -> List[common_pb2.KeyValue]:
        """Convert dimensions to OTLP attributes"""
        return [
            common_pb2.KeyValue(key=key, value=common_pb2.AnyValue(string_value=str(value)))
            for key, value in labels.items()
        ]
