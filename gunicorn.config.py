import os

wsgi_app = "wsgi:app"
worker_class = "gevent"
# the login limiter, code counter and sweep scheduler are per-process
workers = int(os.getenv("WEB_CONCURRENCY", "1"))
worker_connections = int(os.getenv("WORKER_CONNECTIONS", "500"))
timeout = 60
graceful_timeout = 30
bind = "0.0.0.0:{}".format(os.getenv("PORT", "8000"))

loglevel = os.getenv("LOG_LEVEL", "info")
accesslog = "-"
errorlog = "-"


def worker_exit(server, worker):
    from jobs import shutdown_scheduler
    app = getattr(worker, "wsgi", None)
    scheduler = app.extensions.get("scheduler") if app is not None else None
    if scheduler is not None:
        shutdown_scheduler(scheduler)
