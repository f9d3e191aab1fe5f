from __future__ import annotations

from collections.abc import Iterable
import logging

from updatebot.models import RemotePullRequest
from updatebot.observability import log_event


LOGGER = logging.getLogger("updatebot.matcher")


def find_pull_request(
    pull_requests: Iterable[RemotePullRequest] | None,
    title_prefix: str,
    *,
    logger: logging.Logger | None = None,
) -> RemotePullRequest | None:
    """Return the first pull request, in listing order, whose title starts with the prefix.

    Bot-maintained titles may carry suffixes, so only the prefix is compared.
    """
    logger = logger or LOGGER
    scanned = 0
    for pull_request in pull_requests or ():
        scanned += 1
        if pull_request.title and pull_request.title.startswith(title_prefix):
            log_event(
                logger,
                "pull_request_matched",
                severity=logging.DEBUG,
                title_prefix=title_prefix,
                pr_number=pull_request.number,
                scanned=scanned,
            )
            return pull_request
    log_event(
        logger,
        "pull_request_not_matched",
        severity=logging.DEBUG,
        title_prefix=title_prefix,
        scanned=scanned,
    )
    return None
