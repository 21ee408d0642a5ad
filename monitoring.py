# monitoring.py
from prometheus_client import Counter, Histogram
import time
from functools import wraps

# Metrics
EVENTS_INGESTED = Counter('ab_events_ingested_total', 'Tracking events appended to the log', ['event_name'])
EVENTS_REJECTED = Counter('ab_events_rejected_total', 'Tracking events rejected at ingestion', ['reason'])
QUERY_REQUESTS = Counter('ab_query_requests_total', 'Analytics queries served', ['query'])
QUERY_LATENCY = Histogram('ab_query_latency_seconds', 'Analytics query latency', ['query'])


def monitor_performance(query):
    """Count and time an async analytics handler"""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.time()
            QUERY_REQUESTS.labels(query=query).inc()

            try:
                return await func(*args, **kwargs)
            finally:
                QUERY_LATENCY.labels(query=query).observe(time.time() - start_time)

        return wrapper
    return decorator
