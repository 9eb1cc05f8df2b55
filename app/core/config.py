import os

# Database Configuration
# Uses default credentials for local Docker Compose setup
DB_URL = os.getenv("DATABASE_URL", "postgres://user:password@db:5432/orders_db")
REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
KAFKA_BOOTSTRAP_SERVERS = os.getenv("KAFKA_BOOTSTRAP_SERVERS", "kafka:9092")

# Application Metadata
PROJECT_NAME = "Order Service"
VERSION = "1.0.0"

# Envelope identity: 'source' and 'version' fields of every published event
SERVICE_NAME = os.getenv("SERVICE_NAME", "order-service")
SERVICE_VERSION = os.getenv("SERVICE_VERSION", "1.0")

# Ledger name used by the inventory consumer when recording processed events
CONSUMER_SERVICE_NAME = os.getenv("CONSUMER_SERVICE_NAME", "inventory-service")

# Outbox delivery queue
OUTBOX_QUEUE_NAME = os.getenv("OUTBOX_QUEUE_NAME", "outbox-publisher")
OUTBOX_JOB_NAME = os.getenv("OUTBOX_JOB_NAME", "publish-outbox-event")
OUTBOX_RETRY_ATTEMPTS = int(os.getenv("OUTBOX_RETRY_ATTEMPTS", 3)) # Total publish attempts per event
OUTBOX_BACKOFF_DELAY_MS = int(os.getenv("OUTBOX_BACKOFF_DELAY_MS", 2000)) # Base of the exponential backoff
OUTBOX_PUBLISH_TIMEOUT_MS = int(os.getenv("OUTBOX_PUBLISH_TIMEOUT_MS", 10000))
OUTBOX_WORKER_CONCURRENCY = int(os.getenv("OUTBOX_WORKER_CONCURRENCY", 2))
OUTBOX_POLL_INTERVAL_MS = int(os.getenv("OUTBOX_POLL_INTERVAL_MS", 500)) # Idle wait when the queue is empty
OUTBOX_JOB_LEASE_MS = int(os.getenv("OUTBOX_JOB_LEASE_MS", 60000)) # Reserved jobs older than this are stalled

# Reconciliation sweep (re-schedules pending entries that lost their job)
OUTBOX_RECONCILE_INTERVAL = int(os.getenv("OUTBOX_RECONCILE_INTERVAL", 30))
OUTBOX_RECONCILE_GRACE_SECONDS = int(os.getenv("OUTBOX_RECONCILE_GRACE_SECONDS", 60))
OUTBOX_RECONCILE_BATCH_SIZE = int(os.getenv("OUTBOX_RECONCILE_BATCH_SIZE", 100))

# Idempotency ledger retention
PROCESSED_EVENT_RETENTION_DAYS = int(os.getenv("PROCESSED_EVENT_RETENTION_DAYS", 30))
PROCESSED_EVENT_CLEANUP_INTERVAL = int(os.getenv("PROCESSED_EVENT_CLEANUP_INTERVAL", 3600))

# Broker topics, assigned per event family (longest matching prefix wins)
OUTBOX_DEFAULT_TOPIC = os.getenv("OUTBOX_DEFAULT_TOPIC", "domain-events")
TOPIC_ROUTES = {
    "order.": os.getenv("ORDER_EVENTS_TOPIC", "order-events"),
    "inventory.": os.getenv("INVENTORY_EVENTS_TOPIC", "inventory-events"),
}

# Consumer redelivery pause after a handler failure
CONSUMER_RETRY_DELAY = float(os.getenv("CONSUMER_RETRY_DELAY", 5))

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
