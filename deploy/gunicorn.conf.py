import multiprocessing
import os

wsgi_app = "results_portal.main:app"
bind = os.getenv("GUNICORN_BIND", "127.0.0.1:8000")
# Capped at 9 unless GUNICORN_WORKERS is set.
workers = int(os.getenv("GUNICORN_WORKERS", min((multiprocessing.cpu_count() * 2) + 1, 9)))
worker_class = "uvicorn.workers.UvicornWorker"
timeout = int(os.getenv("GUNICORN_TIMEOUT", 120))
graceful_timeout = 30
keepalive = 5
loglevel = os.getenv("GUNICORN_LOGLEVEL", "info")
accesslog = "-"
errorlog = "-"
