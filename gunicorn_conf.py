import multiprocessing
import os

# Gunicorn configuration file
# FastAPI runs under the UvicornWorker

bind = os.environ.get("BIND", "0.0.0.0:3000")

# Standard formula: (2 x num_cores) + 1
workers = int(os.environ.get("WEB_CONCURRENCY", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"

timeout = 120
keepalive = 5

# Access/error logs go to the console; application logs are set up in app.logging_setup
accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("LOG_LEVEL", "info").lower()

name = "task_user_api"
reload = False  # Set to True for development only
