"""
Encryption gateway session manager.

One lazily created coprocessor session per manager. Concurrent first callers
share a single in-flight initialization; a failed initialization clears every
cached piece of state so the next call starts clean.

    UNINITIALIZED --get_session()--> INITIALIZING --ok--> READY
                                         |
                                         +--error--> UNINITIALIZED

READY only goes back to UNINITIALIZED through reset().
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from payroll_services import config as cfg
from payroll_services.api.logging_config import get_logger
from payroll_services.config import NetworkConfig
from payroll_services.errors import ExecutionEnvironmentError, SessionInitError
from payroll_services.fhe_core.relayer import RelayerInstance, load_relayer_runtime

logger = get_logger("fhe.session")

RuntimeLoader = Callable[[NetworkConfig], Awaitable[Any]]

CLIENT_CONTEXT = "client"


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


@dataclass(frozen=True)
class ConfidentialSession:
    instance: RelayerInstance
    created_at: float
    runtime: Any = field(default=None, repr=False)
    ready: bool = True


class SessionManager:
    def __init__(
        self,
        config: Optional[NetworkConfig] = None,
        runtime_loader: RuntimeLoader = load_relayer_runtime,
        context: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or NetworkConfig.from_env()
        self._loader = runtime_loader
        self._context = context if context is not None else cfg.EXECUTION_CONTEXT
        self._clock = clock
        self._lock = asyncio.Lock()
        self._session: Optional[ConfidentialSession] = None
        self._inflight: Optional[asyncio.Task] = None
        self._generation = 0

    @property
    def state(self) -> SessionState:
        if self._session is not None:
            return SessionState.READY
        if self._inflight is not None:
            return SessionState.INITIALIZING
        return SessionState.UNINITIALIZED

    async def get_session(self) -> ConfidentialSession:
        if self._context != CLIENT_CONTEXT:
            raise ExecutionEnvironmentError(
                f"confidential session requested in '{self._context}' context"
            )
        if self._session is not None:
            return self._session

        async with self._lock:
            if self._session is not None:
                return self._session
            if self._inflight is None:
                self._inflight = asyncio.create_task(self._initialize(self._generation))
                self._inflight.add_done_callback(_consume_result)
            task = self._inflight

        # shield: one caller giving up must not cancel the shared initialization
        return await asyncio.shield(task)

    async def _initialize(self, generation: int) -> ConfidentialSession:
        logger.info("Initializing coprocessor session (chain_id=%s)", self.config.chain_id)
        runtime = None
        try:
            runtime = await self._loader(self.config)
            await runtime.bootstrap()
            instance = await runtime.create_instance()
        except Exception as e:
            if generation == self._generation:
                self._session = None
                self._inflight = None
            if runtime is not None:
                await _close_quietly(runtime)
            logger.error("Coprocessor session initialization failed: %s", e)
            if isinstance(e, SessionInitError):
                raise
            raise SessionInitError(f"coprocessor session initialization failed: {e}") from e

        session = ConfidentialSession(instance=instance, created_at=self._clock(), runtime=runtime)
        if generation != self._generation:
            # reset() ran while we were initializing; do not resurrect stale state
            logger.info("Discarding session from a superseded initialization")
            return session
        self._session = session
        self._inflight = None
        logger.info("Coprocessor session ready")
        return session

    def reset(self) -> None:
        """Drop the cached session and any in-flight initialization marker."""
        self._generation += 1
        self._session = None
        self._inflight = None

    async def aclose(self) -> None:
        session = self._session
        self.reset()
        if session is not None and session.runtime is not None:
            await session.runtime.aclose()


async def _close_quietly(runtime: Any) -> None:
    close = getattr(runtime, "aclose", None)
    if close is None:
        return
    try:
        await close()
    except Exception as e:
        logger.warning("Closing failed coprocessor runtime raised: %s", e)


def _consume_result(task: asyncio.Task) -> None:
    # Mark the exception as retrieved when every awaiter was cancelled.
    if not task.cancelled():
        task.exception()


__all__ = ["SessionState", "ConfidentialSession", "SessionManager", "CLIENT_CONTEXT"]
