"""
Prometheus metrics exporter
"""
import logging
from prometheus_client import Counter, Histogram, Gauge, start_http_server
from functools import wraps
import time

logger = logging.getLogger(__name__)

# Counters
verdicts = Counter('moderation_verdicts_total', 'Total verdicts issued', ['outcome', 'source'])
violations_detected = Counter('moderation_violations_total', 'Total violations detected', ['category'])
rate_limit_denials = Counter('moderation_rate_limit_denials_total', 'Rate limit denials', ['identity_kind'])
failure_policy_activations = Counter(
    'moderation_failure_policy_total', 'Fail-open / fail-closed activations', ['component', 'policy']
)
sanctions_applied = Counter('moderation_sanctions_total', 'Sanctions applied', ['action_type'])
queue_dispositions = Counter('moderation_queue_dispositions_total', 'Review queue dispositions', ['outcome'])
reputation_points = Counter('moderation_reputation_points_total', 'Reputation points granted', ['action_type'])

# Histograms (for latency)
decision_latency = Histogram('moderation_decision_duration_seconds', 'Decision duration', ['stage'])

# Gauges (for current state)
queue_depth = Gauge('moderation_queue_depth', 'Pending review queue depth')


class MetricsExporter:
    """Prometheus metrics exporter"""

    def __init__(self, port: int = 8000):
        self.port = port
        self.server_started = False

    def start(self, port: int = None):
        """Start Prometheus HTTP server"""
        if port is not None:
            self.port = port
        if not self.server_started:
            start_http_server(self.port)
            self.server_started = True
            logger.info(f"Prometheus metrics server started on port {self.port}")

    @staticmethod
    def track_latency(stage: str):
        """Decorator to track coroutine duration"""
        def decorator(func):
            @wraps(func)
            async def wrapper(*args, **kwargs):
                start_time = time.time()
                try:
                    result = await func(*args, **kwargs)
                    decision_latency.labels(stage=stage).observe(time.time() - start_time)
                    return result
                except Exception:
                    decision_latency.labels(stage=f"{stage}_error").observe(time.time() - start_time)
                    raise
            return wrapper
        return decorator

    @staticmethod
    def record_verdict(outcome: str, source: str):
        """Record a moderation verdict"""
        verdicts.labels(outcome=outcome, source=source).inc()

    @staticmethod
    def record_violation(category: str):
        """Record violation detection"""
        violations_detected.labels(category=category).inc()

    @staticmethod
    def record_rate_limit_denial(authenticated: bool):
        rate_limit_denials.labels(identity_kind="user" if authenticated else "anonymous").inc()

    @staticmethod
    def record_failure_policy(component: str, policy: str):
        failure_policy_activations.labels(component=component, policy=policy).inc()

    @staticmethod
    def record_sanction(action_type: str):
        sanctions_applied.labels(action_type=action_type).inc()

    @staticmethod
    def record_disposition(outcome: str):
        queue_dispositions.labels(outcome=outcome).inc()

    @staticmethod
    def record_reputation(action_type: str, points: int):
        reputation_points.labels(action_type=action_type).inc(points)

    @staticmethod
    def update_queue_depth(depth: int):
        """Update queue depth gauge"""
        queue_depth.set(depth)


# Singleton instance
metrics = MetricsExporter()
