"""
Fibcalc Engine - Fibonacci Calculator Service

FastAPI gateway plus a Redis-subscribed compute worker.
Indexes are recorded in Postgres, results are cached in Redis.
"""

__version__ = "2.0.0"
