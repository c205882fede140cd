"""
Gunicorn configuration for the sales warehouse read API.

    gunicorn salesdw.main:app -c gunicorn.conf.py
"""

import multiprocessing
import os

from salesdw.config import get_settings

_settings = get_settings()

bind = os.getenv("BIND", f"{_settings.api_host}:{_settings.api_port}")
backlog = 1024

# Snapshot reads are I/O bound; a small pool is enough
workers = int(os.getenv("WORKERS", min(multiprocessing.cpu_count() + 1, 8)))
worker_class = "uvicorn.workers.UvicornWorker"
max_requests = 5000
max_requests_jitter = 500
timeout = 60
keepalive = 5
graceful_timeout = 30

proc_name = "salesdw-api"

daemon = False
pidfile = os.getenv("PIDFILE", "/tmp/salesdw-api.pid")

errorlog = "-"
accesslog = "-"
loglevel = _settings.monitoring.log_level.lower()


def when_ready(server):
    server.log.info("salesdw API ready on %s (%s workers)", bind, workers)


def worker_abort(worker):
    worker.log.warning("Worker %s aborted", worker.pid)
