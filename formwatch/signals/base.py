from __future__ import annotations

import abc
import logging
from collections.abc import Sequence
from typing import Any, Optional

from formwatch.models import FormSnapshot

logger = logging.getLogger(__name__)


class VerdictSource(abc.ABC):
    """
    Источник вердикта о состоянии формы.

    None означает «сигнала нет», и цепочка переходит к следующему источнику.
    """

    key: str

    @abc.abstractmethod
    async def lookup(self, session: Any) -> Optional[FormSnapshot]:
        raise NotImplementedError


async def resolve_verdict(sources: Sequence[VerdictSource], session: Any) -> Optional[FormSnapshot]:
    """Опрашивает источники по приоритету, первый не-None результат выигрывает."""
    for source in sources:
        snapshot = await source.lookup(session)
        if snapshot is not None:
            logger.info(
                "[signals] verdict from %s: %s (%s)",
                source.key,
                snapshot.verdict.value,
                snapshot.reason_code,
            )
            return snapshot
        logger.debug("[signals] %s gave no verdict, trying next source", source.key)
    return None
