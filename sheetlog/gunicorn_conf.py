"""Gunicorn settings for the endpoint.

    gunicorn -c python:sheetlog.gunicorn_conf 'sheetlog.server:create_app()'

The write lock lives in the worker process, so the endpoint runs as a single
worker and serves concurrent requests on threads.
"""
from sheetlog import config

bind = f"0.0.0.0:{config.PORT}"
workers = 1
worker_class = "gthread"
threads = config.SERVER_THREADS
