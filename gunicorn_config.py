import multiprocessing
import os

# Gunicorn production configuration for the cart service
# Run: gunicorn -c gunicorn_config.py wsgi:app
bind = f"0.0.0.0:{os.environ.get('PORT', '8000')}"

# Each cart mutation holds its row lock for one short request,
# so a threaded worker pool sized to the DB pool is enough.
workers = int(os.environ.get('WEB_CONCURRENCY', multiprocessing.cpu_count() * 2 + 1))
threads = 4
worker_class = 'gthread'

# Resilience
timeout = 30
graceful_timeout = 30
max_requests = 2000
max_requests_jitter = 200
keepalive = 5

# Logging
accesslog = '-'       # Stdout
errorlog = '-'        # Stderr
loglevel = os.environ.get('LOG_LEVEL', 'info')
capture_output = True
