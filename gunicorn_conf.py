"""
Gunicorn settings for the booking API
Run with: gunicorn booking_server:app -c gunicorn_conf.py
"""
import os

bind = f"0.0.0.0:{os.getenv('PORT', '8000')}"
workers = int(os.getenv("WEB_CONCURRENCY", "2"))
worker_class = "uvicorn.workers.UvicornWorker"

# Settlement and dispute requests hold row locks; let them finish on reload
timeout = int(os.getenv("GUNICORN_TIMEOUT", "60"))
graceful_timeout = 30
keepalive = 5

max_requests = 5000
max_requests_jitter = 500

# Rate limiting keys on X-Forwarded-For, so only trust the proxy in front of us
forwarded_allow_ips = os.getenv("FORWARDED_ALLOW_IPS", "127.0.0.1")

accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()

proc_name = "booking_api"

# Engine pools and the job scheduler are created per worker at app startup
preload_app = False


def when_ready(server):
    scheduler = "disabled" if os.getenv("DISABLE_SCHEDULER", "false").lower() == "true" else "one per worker"
    print(f"✅ Booking API ready on {bind}: {workers} workers, scheduler {scheduler}")


def worker_exit(server, worker):
    print(f"👋 Booking API worker {worker.pid} exited")
