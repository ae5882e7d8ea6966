import asyncio
import itertools
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Awaitable, Dict, Iterable, Iterator, List, Optional, TypeVar

from loguru import logger

from app.schemas.numbering import (
    NextNumber,
    NumberingValidation,
    SeriesConfig,
    SeriesCounter,
    SeriesStatistics,
)
from app.services.backend_client import BackendClient, BackendError
from app.services.errors import VALIDATION, describe

T = TypeVar("T")


@dataclass
class NumberingState:
    counters: List[SeriesCounter] = field(default_factory=list)
    series: List[str] = field(default_factory=list)
    loading: bool = False
    error: Optional[str] = None
    error_kind: Optional[str] = None


class NumberingRegistry:
    """Local view of the per-series counters owned by the backend.

    Operations never raise: failures are logged and stored in
    ``state.error`` and the call returns ``None`` (``[]`` for lists).
    Every mutating call takes a ticket when it is issued; a response is
    merged only if no response from a newer ticket has been merged for
    the same series.
    """

    def __init__(self, client: BackendClient):
        self.client = client
        self.state = NumberingState()
        self.closed = False
        self._pending = 0
        self._tickets = itertools.count(1)
        self._applied: Dict[str, int] = {}

    def close(self) -> None:
        self.closed = True

    @property
    def loading(self) -> bool:
        return self.state.loading

    @property
    def error(self) -> Optional[str]:
        return self.state.error

    @contextmanager
    def _in_flight(self) -> Iterator[None]:
        self._pending += 1
        self.state.loading = True
        try:
            yield
        finally:
            self._pending -= 1
            self.state.loading = self._pending > 0

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> Optional[T]:
        with self._in_flight():
            try:
                result = await awaitable
            except BackendError as exc:
                logger.warning("Numbering {} failed: {}", operation, exc)
                self._fail(*describe(exc))
                return None
            except Exception as exc:  # broad: surface the message, never crash the caller
                logger.exception("Unexpected error during numbering {}", operation)
                self._fail(*describe(exc))
                return None
        if self.closed:
            logger.debug("Registry closed, dropping {} result", operation)
            return None
        self.state.error = None
        self.state.error_kind = None
        return result

    def _fail(self, kind: str, message: str) -> None:
        if self.closed:
            return
        self.state.error = message
        self.state.error_kind = kind

    def _merge(self, counters: Iterable[SeriesCounter], ticket: int) -> None:
        for counter in counters:
            code = counter.series_code
            if self._applied.get(code, 0) > ticket:
                logger.info("Ignoring stale response for series {} (ticket {})", code, ticket)
                continue
            self._applied[code] = ticket
            if counter.current_number < counter.initial_number:
                logger.warning(
                    "Series {} reports current number {} below initial {}",
                    code,
                    counter.current_number,
                    counter.initial_number,
                )
            for idx, existing in enumerate(self.state.counters):
                if existing.series_code == code:
                    self.state.counters[idx] = counter
                    break
            else:
                self.state.counters.append(counter)
            if code not in self.state.series:
                self.state.series.append(code)

    def _replace_all(self, counters: List[SeriesCounter], ticket: int) -> None:
        # a full listing must not clobber writes that completed after it was issued
        newer = {
            c.series_code: c for c in self.state.counters if self._applied.get(c.series_code, 0) > ticket
        }
        replaced = [newer.pop(c.series_code, c) for c in counters]
        replaced.extend(newer.values())
        for counter in counters:
            code = counter.series_code
            self._applied[code] = max(self._applied.get(code, 0), ticket)
        self.state.counters = replaced

    async def list_series(self) -> List[str]:
        series = await self._call("list_series", self.client.list_series())
        if series is None:
            return []
        self.state.series = list(series)
        return series

    async def list_counters(self) -> List[SeriesCounter]:
        ticket = next(self._tickets)
        counters = await self._call("list_counters", self.client.list_counters())
        if counters is None:
            return []
        self._replace_all(counters, ticket)
        return list(self.state.counters)

    async def load(self) -> bool:
        ticket = next(self._tickets)
        result = await self._call("load", asyncio.gather(self.client.list_counters(), self.client.list_series()))
        if result is None:
            return False
        counters, series = result
        self._replace_all(counters, ticket)
        self.state.series = list(series)
        for counter in self.state.counters:
            if counter.series_code not in self.state.series:
                self.state.series.append(counter.series_code)
        return True

    async def configure(self, series_code: str, initial_number: int, active: bool = True) -> Optional[SeriesCounter]:
        try:
            config = SeriesConfig(series_code=series_code, initial_number=initial_number, active=active)
        except ValueError as exc:
            self._fail(VALIDATION, f"Configuración inválida para la serie {series_code}: {exc}")
            return None
        ticket = next(self._tickets)
        counter = await self._call("configure", self.client.configure_series(config))
        if counter is None:
            return None
        self._merge([counter], ticket)
        logger.info("Serie {} configurada", counter.series_code)
        return counter

    async def configure_bulk(self, configs: List[SeriesConfig]) -> List[SeriesCounter]:
        if not configs:
            return []
        ticket = next(self._tickets)
        counters = await self._call("configure_bulk", self.client.configure_series_bulk(configs))
        if counters is None:
            return []
        self._merge(counters, ticket)
        logger.info("{} series configuradas", len(counters))
        return counters

    async def next_number(self, series_code: str) -> Optional[NextNumber]:
        # advisory: the backend owns the counter, nothing is merged locally
        return await self._call("next_number", self.client.next_number(series_code))

    async def reset(self, series_code: str, new_number: int) -> Optional[SeriesCounter]:
        if new_number < 0:
            self._fail(VALIDATION, f"El nuevo número para la serie {series_code} debe ser mayor o igual a 0")
            return None
        ticket = next(self._tickets)
        counter = await self._call("reset", self.client.reset_counter(series_code, new_number))
        if counter is None:
            return None
        self._merge([counter], ticket)
        logger.info("Contador de serie {} reseteado a {}", series_code, new_number)
        return counter

    async def set_active(self, series_code: str, active: bool) -> Optional[SeriesCounter]:
        ticket = next(self._tickets)
        counter = await self._call("set_active", self.client.set_series_active(series_code, active))
        if counter is None:
            return None
        self._merge([counter], ticket)
        logger.info("Serie {} {}", series_code, "activada" if active else "desactivada")
        return counter

    async def get_statistics(self, series_code: str) -> Optional[SeriesStatistics]:
        return await self._call("get_statistics", self.client.series_statistics(series_code))

    async def validate_series(self, series_code: str) -> Optional[NumberingValidation]:
        validation = await self._call("validate_series", self.client.validate_series(series_code))
        if validation is not None and not validation.es_valida:
            logger.warning("Serie {} tiene problemas de numeración: {}", series_code, validation.errores)
        return validation

    def get_counter(self, series_code: str) -> Optional[SeriesCounter]:
        return next((c for c in self.state.counters if c.series_code == series_code), None)

    def is_configured(self, series_code: str) -> bool:
        counter = self.get_counter(series_code)
        return bool(counter and counter.active)
