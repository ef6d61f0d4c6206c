import os

def cpu():
    return max(1, (os.cpu_count() or 1))

wsgi_app = "mealorders.wsgi:application"
bind = f"0.0.0.0:{os.getenv('PORT', '8000')}"

# Workers: the API blocks on the gateway and the DB, so threads matter more than processes
workers = min(max(2, cpu()), 6)
worker_class = "gthread"
threads = int(os.getenv("GTHREADS", "8"))

# Gateway call budget (timeout x retries) must stay below the worker timeout
timeout = int(os.getenv("GUNI_TIMEOUT", "45"))
graceful_timeout = int(os.getenv("GUNI_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.getenv("GUNI_KEEPALIVE", "5"))

preload_app = True
max_requests = int(os.getenv("GUNI_MAX_REQUESTS", "2000"))
max_requests_jitter = int(os.getenv("GUNI_MAX_REQUESTS_JITTER", "200"))

# App logs are JSON via Django LOGGING; gunicorn keeps plain access logs
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("GUNI_LOGLEVEL", "info")
