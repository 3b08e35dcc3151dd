"""
Gunicorn configuration for the back-office API.

Uvicorn workers under Gunicorn. Bulk batches can run for a while, so the
worker timeout is generous.
"""

import multiprocessing
import os

bind = os.getenv("BIND", "0.0.0.0:8000")
backlog = 2048

workers = int(os.getenv("WORKERS", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
max_requests = 10000
max_requests_jitter = 1000
timeout = int(os.getenv("WORKER_TIMEOUT", 180))
graceful_timeout = 30
keepalive = 5

proc_name = "ecommerce-backoffice-api"

# structlog renders application logs; gunicorn writes its own to stderr
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()
accesslog = None


def post_fork(server, worker):
    server.log.info("Worker spawned (pid: %s)", worker.pid)


def worker_abort(worker):
    worker.log.warning("Worker aborted, likely a batch exceeded the worker timeout (pid: %s)", worker.pid)
