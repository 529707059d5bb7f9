"""
Gunicorn Configuration for Ledger Budgets
Production WSGI server settings

    gunicorn -c deployment/gunicorn_config.py "app:create_app('production')"
"""
import multiprocessing
import os

APP_ROOT = os.environ.get('LEDGER_APP_ROOT', '/srv/ledger-budgets')

# Server Socket
bind = os.environ.get('GUNICORN_BIND', '127.0.0.1:8000')
backlog = 2048

# Sync workers: one request per worker process.  Concurrent budget and
# membership writes are serialised by row locks in the database, not here.
workers = int(os.environ.get('GUNICORN_WORKERS', multiprocessing.cpu_count() * 2 + 1))
worker_class = 'sync'
max_requests = 1000
max_requests_jitter = 50
timeout = 60
keepalive = 5

# Logging
accesslog = os.path.join(APP_ROOT, 'logs', 'gunicorn_access.log')
errorlog = os.path.join(APP_ROOT, 'logs', 'gunicorn_error.log')
loglevel = 'info'
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s %(D)s'

proc_name = 'ledger-budgets'

# Server Mechanics
daemon = False
pidfile = os.path.join(APP_ROOT, 'gunicorn.pid')
umask = 0o007

# Security
limit_request_line = 4094
limit_request_fields = 100
limit_request_field_size = 8190


def post_fork(server, worker):
    """Called after a worker has been forked"""
    server.log.info("Worker spawned (pid: %s)", worker.pid)


def when_ready(server):
    """Called when the server is ready"""
    server.log.info("Ledger Budgets ready. Spawning workers")


def worker_abort(worker):
    """Called when a worker times out; its open transaction is rolled back by the database"""
    worker.log.info("worker received SIGABRT signal")
