"""
Dependency container for the EcoHunt backend.
This module owns environment configuration and provides lazy access to shared
clients and services so that blueprints never build them on import.
"""

import logging
import os
import threading
from dotenv import load_dotenv
from flask import current_app
import redis
from redis.retry import Retry
from redis.backoff import ExponentialBackoff

load_dotenv()


def _env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


# --- Environment variables ---
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///ecohunt.db")
# Render/Heroku hand out 'postgres://' URLs which SQLAlchemy no longer accepts
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "dev-only-secret-change-me-in-production")
JWT_EXPIRY_DAYS = int(os.environ.get("JWT_EXPIRY_DAYS", "30"))
GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY")
GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-2.5-flash")
VERIFICATION_TIMEOUT_SECONDS = float(os.environ.get("VERIFICATION_TIMEOUT_SECONDS", "30"))
WORKFLOW_TTL_SECONDS = int(os.environ.get("WORKFLOW_TTL_SECONDS", "3600"))
CLAIM_COMMIT_RETRY_ENABLED = _env_bool("CLAIM_COMMIT_RETRY_ENABLED")


def default_config():
    """Flask config derived from the environment."""
    return {
        "SQLALCHEMY_DATABASE_URI": DATABASE_URL,
        "REDIS_URL": REDIS_URL,
        "RATELIMIT_STORAGE_URI": REDIS_URL,
        "JWT_SECRET_KEY": JWT_SECRET_KEY,
        "JWT_EXPIRY_DAYS": JWT_EXPIRY_DAYS,
        "GEMINI_API_KEY": GEMINI_API_KEY,
        "GEMINI_MODEL": GEMINI_MODEL,
        "VERIFICATION_TIMEOUT_SECONDS": VERIFICATION_TIMEOUT_SECONDS,
        "WORKFLOW_TTL_SECONDS": WORKFLOW_TTL_SECONDS,
        "CLAIM_COMMIT_RETRY_ENABLED": CLAIM_COMMIT_RETRY_ENABLED,
    }


# --- Redis Connection Pool with Retry Logic ---
_redis_local = threading.local()

def get_redis_connection(url=None):
    """
    Get a thread-local Redis connection with retry logic, or None when Redis
    is unreachable. Callers must tolerate None and skip caching.
    """
    if not hasattr(_redis_local, 'connection'):
        try:
            retry = Retry(ExponentialBackoff(), retries=3)
            connection_pool = redis.ConnectionPool.from_url(
                url or REDIS_URL,
                decode_responses=True,
                retry=retry,
                max_connections=20,
                health_check_interval=30,
                socket_connect_timeout=5,
                socket_timeout=10
            )
            _redis_local.connection = redis.Redis(connection_pool=connection_pool)
            _redis_local.connection.ping()
            logging.info("Redis connection pool initialized successfully")
        except redis.exceptions.ConnectionError as e:
            logging.error(f"Failed to connect to Redis: {e}")
            _redis_local.connection = None
        except Exception as e:
            logging.error(f"Unexpected error initializing Redis: {e}")
            _redis_local.connection = None

    return _redis_local.connection


# --- Per-app services ---
def _services():
    return current_app.extensions["ecohunt"]

def redis_client():
    """The app's Redis client, or None when caching is disabled."""
    services = _services()
    if "redis" not in services:
        url = current_app.config.get("REDIS_URL")
        services["redis"] = get_redis_connection(url) if url else None
    return services["redis"]

def get_verification_service():
    services = _services()
    if services.get("verification_service") is None:
        from gemini_service import GeminiVerificationService, build_client
        client = build_client(current_app.config.get("GEMINI_API_KEY"),
                              current_app.config.get("VERIFICATION_TIMEOUT_SECONDS"))
        services["verification_service"] = GeminiVerificationService(client, current_app.config.get("GEMINI_MODEL"))
    return services["verification_service"]

def get_analysis_service():
    """The area analysis service, or None when no Gemini key is configured."""
    services = _services()
    if "analysis_service" not in services:
        api_key = current_app.config.get("GEMINI_API_KEY")
        if api_key:
            from gemini_service import GeminiAreaAnalysisService, build_client
            services["analysis_service"] = GeminiAreaAnalysisService(build_client(api_key), current_app.config.get("GEMINI_MODEL"))
        else:
            services["analysis_service"] = None
    return services["analysis_service"]

def get_workflow_store():
    services = _services()
    if services.get("workflow_store") is None:
        from workflow_store import WorkflowStore
        services["workflow_store"] = WorkflowStore(redis_client(), current_app.config.get("WORKFLOW_TTL_SECONDS"))
    return services["workflow_store"]
