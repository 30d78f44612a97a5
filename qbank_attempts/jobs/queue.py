from redis import Redis
from rq import Queue

from qbank_attempts.core.config import settings

redis = Redis.from_url(settings.REDIS_URL)
notification_queue = Queue(settings.NOTIFICATION_QUEUE, connection=redis)
