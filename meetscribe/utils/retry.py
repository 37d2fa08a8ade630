import logging
import time
from typing import Callable, Optional, Type, TypeVar, Tuple

T = TypeVar("T")

logger = logging.getLogger(__name__)


def with_retry(
    fn: Callable[[], T],
    *,
    retries: int = 3,
    backoff_seconds: float = 0.5,
    retry_on: Optional[Tuple[Type[BaseException], ...]] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run fn() with retries and exponential backoff. If retry_on is None, defaults to (Exception,). Exceptions outside retry_on propagate immediately.
    Why available: Used by the connectivity check and track downloads so a transient network blip does not fail the whole request or job."""
    exc_types: Tuple[Type[BaseException], ...] = retry_on or (Exception,)

    last_err: Optional[BaseException] = None

    for attempt in range(retries + 1):
        try:
            return fn()
        except exc_types as e:
            last_err = e
            if attempt >= retries:
                raise
            sleep_s = backoff_seconds * (2 ** attempt)
            logger.info("retrying_after_error", extra={"attempt": attempt + 1, "sleep_s": sleep_s, "error": str(e)})
            sleep(sleep_s)

    # Should be unreachable, but keeps type-checkers happy.
    assert last_err is not None
    raise last_err
