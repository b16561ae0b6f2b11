# cargohold/health.py
import logging
from dataclasses import dataclass
from typing import List, Optional

from lfs import db
from lfs.storage import get_object_store
from lfs_internals.cache import RedisCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthCheckResult:
    name: str
    healthy: bool
    error: Optional[str] = None

    def to_dict(self) -> dict:
        # Failure reasons stay in the logs; probes only need the verdict.
        return {"name": self.name, "healthy": self.healthy}


class PostgresHealthChecker:
    name = "postgres"

    def check(self) -> None:
        db.ping()


class RedisHealthChecker:
    name = "redis"

    def check(self) -> None:
        RedisCache().ping()


class S3HealthChecker:
    name = "s3"

    def check(self) -> None:
        get_object_store().ping()


class ReadinessService:
    def __init__(self, checkers=None):
        self.checkers = checkers if checkers is not None else [
            PostgresHealthChecker(),
            RedisHealthChecker(),
            S3HealthChecker(),
        ]

    def run(self) -> List[HealthCheckResult]:
        results = []
        for checker in self.checkers:
            try:
                checker.check()
            except Exception as e:
                logger.error(f"Readiness check '{checker.name}' failed: {e}")
                results.append(HealthCheckResult(checker.name, False, str(e)))
            else:
                results.append(HealthCheckResult(checker.name, True))
        return results
