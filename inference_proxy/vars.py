import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "inference-proxy")
PROXY_VERSION = os.getenv("PROXY_VERSION", "1.0.0")

UPSTREAM_HOST = os.getenv("UPSTREAM_HOST", "127.0.0.1")
UPSTREAM_PORT = int(os.getenv("UPSTREAM_PORT", "8000"))
PROXY_TIMEOUT = float(os.getenv("PROXY_TIMEOUT", "300"))  # 5 minutes default
HEALTH_TIMEOUT = float(os.getenv("HEALTH_TIMEOUT", "5"))

BIND_HOST = os.getenv("BIND_HOST", "0.0.0.0")
HTTP_PORT = int(os.getenv("PORT", "8080"))
HTTPS_PORT = int(os.getenv("HTTPS_PORT", "8443"))
USE_HTTPS = os.getenv("USE_HTTPS", "false").lower() == "true"
SSL_CERT_PATH = os.getenv("SSL_CERT_PATH", "/etc/ssl/certs/server.crt")
SSL_KEY_PATH = os.getenv("SSL_KEY_PATH", "/etc/ssl/private/server.key")

# Used by the legacy /api/infer endpoint
MODEL_ID = os.getenv("MODEL_ID", "default-model")
MAX_TOKENS = int(os.getenv("MAX_TOKENS", "512"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "info").lower()

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
