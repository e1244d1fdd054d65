"""
Gunicorn config: bind to 0.0.0.0 and PORT for Railway/Render.
A single worker keeps exactly one renewal scheduler per deployment.
"""
import os

bind = "0.0.0.0:{}".format(os.environ.get("PORT", "8080"))
workers = 1
threads = int(os.environ.get("GUNICORN_THREADS", "4"))
timeout = 120
