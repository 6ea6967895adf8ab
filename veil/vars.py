import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "origin-veil")
HOST = os.environ.get("HOSTNAME", "0.0.0.0")
PORT = int(os.environ.get("PORT", "3000"))

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")

# Everything but proxied paths answers 404, so /metrics is opt-in
EXPOSE_METRICS = os.getenv("EXPOSE_METRICS", "false").lower() == "true"
