"""Static context source: trading contexts loaded from disk.

Supported formats
-----------------
* **Single JSON / YAML file** holding one context object.
* **Single JSON / YAML file** holding a list of contexts; each call to
  ``build_context`` advances to the next one and the last one repeats.
* **JSON-lines file**: one context per line.

If an ``account_provider`` is given (e.g. ``PaperExchange.account_state``),
its positions replace the on-disk ones so decisions see the live book.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable

import yaml
from pydantic import ValidationError

from models.context import AccountState, TradingContext
from models.errors import InvalidInput

logger = logging.getLogger(__name__)


class StaticContextSource:
    def __init__(
        self,
        contexts: list[TradingContext],
        account_provider: Callable[[], AccountState] | None = None,
    ) -> None:
        if not contexts:
            raise InvalidInput("StaticContextSource needs at least one context")
        self._contexts = list(contexts)
        self._account_provider = account_provider
        self._index = 0

    @classmethod
    def from_file(
        cls,
        path: str | Path,
        account_provider: Callable[[], AccountState] | None = None,
    ) -> StaticContextSource:
        return cls(load_contexts(path), account_provider)

    def __len__(self) -> int:
        return len(self._contexts)

    async def build_context(self, symbol: str) -> TradingContext:
        context = self._contexts[min(self._index, len(self._contexts) - 1)]
        self._index += 1
        if context.symbol != symbol:
            context = context.model_copy(update={"symbol": symbol})
        if context.snapshot is None:
            logger.warning("Context has no market snapshot for %s", symbol)

        if self._account_provider is not None:
            live = self._account_provider()
            balance = live.balance if live.balance is not None else context.account.balance
            available = (
                live.available_balance
                if live.available_balance is not None
                else context.account.available_balance
            )
            context = context.model_copy(
                update={
                    "account": AccountState(
                        balance=balance,
                        available_balance=available,
                        positions=live.positions,
                    )
                }
            )
        return context


# ------------------------------------------------------------------
# Loading from disk
# ------------------------------------------------------------------

def load_contexts(path: str | Path) -> list[TradingContext]:
    """Load one or more ``TradingContext`` objects from *path*."""
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Context file not found: {path}")

    text = path.read_text(encoding="utf-8")
    if path.suffix == ".jsonl":
        raw: Any = [json.loads(line) for line in text.splitlines() if line.strip()]
    elif path.suffix in (".yaml", ".yml"):
        raw = yaml.safe_load(text)
    elif path.suffix == ".json":
        raw = json.loads(text)
    else:
        raise InvalidInput(f"Unsupported context file type: {path.suffix}")

    items = raw if isinstance(raw, list) else [raw]
    contexts = []
    for idx, item in enumerate(items):
        try:
            contexts.append(TradingContext.model_validate(item))
        except ValidationError as exc:
            raise InvalidInput(f"Invalid context #{idx} in {path}: {exc}") from exc

    logger.info("Loaded %d context(s) from %s", len(contexts), path)
    return contexts
