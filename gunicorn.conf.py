import os


def _env_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, "") or "").strip() or default)
    except Exception:
        return default


wsgi_app = "app:create_app()"
bind = f"0.0.0.0:{_env_int('PORT', 5002)}"

# Each worker holds its own DB pool (DB_POOL_SIZE + DB_MAX_OVERFLOW).
workers = max(1, _env_int("WEB_CONCURRENCY", 2))
threads = max(1, _env_int("PYTHON_THREADS", 4))

# Bulk notification runs wait on the relay; keep above NOTIFY_TIMEOUT_SECONDS.
timeout = max(30, _env_int("GUNICORN_TIMEOUT", 120))
graceful_timeout = max(5, _env_int("GUNICORN_GRACEFUL_TIMEOUT", 30))
keepalive = max(1, _env_int("GUNICORN_KEEPALIVE", 5))

# Candidate URLs carry test tokens; app.request logs the route template instead.
accesslog = None
errorlog = "-"

max_requests = max(0, _env_int("GUNICORN_MAX_REQUESTS", 0))
max_requests_jitter = max(0, _env_int("GUNICORN_MAX_REQUESTS_JITTER", 0))
