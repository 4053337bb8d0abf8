"""
Retrieval backend supervisor - owns a local search backend process.

A local vector search server can be launched next to the engine for
development. The supervisor is an explicit object owned by whoever starts
it, so tests and the chat server can run several without sharing globals.
"""

import asyncio
import logging
import os
import signal
from dataclasses import dataclass, field
from pathlib import Path

import httpx

logger = logging.getLogger(__name__)


@dataclass
class BackendConfig:
    """How to launch and probe the search backend."""

    command: list[str]
    cwd: str | Path | None = None
    host: str = "localhost"
    port: int = 1307
    env: dict[str, str] = field(default_factory=dict)
    ready_path: str = "/health"
    ready_attempts: int = 10
    ready_delay: float = 0.5
    stop_timeout: float = 3.0


class RetrievalBackendSupervisor:
    """
    Starts, probes and stops one backend process.

    Example:
        config = BackendConfig(command=["node", "server/index.js"], cwd="nbase")
        async with RetrievalBackendSupervisor(config) as backend:
            retriever = HttpKnowledgeRetriever(backend.base_url)
    """

    def __init__(self, config: BackendConfig):
        self.config = config
        self._process: asyncio.subprocess.Process | None = None
        self._log_tasks: list[asyncio.Task] = []

    @property
    def base_url(self) -> str:
        return f"http://{self.config.host}:{self.config.port}"

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    async def start(self) -> bool:
        """
        Launch the backend and wait for its health endpoint.

        Returns:
            True once the backend answers the readiness probe, False if it
            could not be spawned, exited early or never became ready.
        """
        if self.is_running:
            logger.info("🟢 Retrieval backend already running")
            return True

        env = {
            **os.environ,
            "HOST": self.config.host,
            "PORT": str(self.config.port),
            **self.config.env,
        }
        logger.info(f"🚀 Starting retrieval backend: {' '.join(self.config.command)}")
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.config.command,
                cwd=str(self.config.cwd) if self.config.cwd else None,
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"❌ Failed to start retrieval backend: {e}")
            self._process = None
            return False

        logger.info(f"🟢 Retrieval backend started with PID {self._process.pid}")
        self._log_tasks = [
            asyncio.create_task(self._forward(self._process.stdout, logging.INFO)),
            asyncio.create_task(self._forward(self._process.stderr, logging.WARNING)),
        ]

        ready = await self.wait_until_ready()
        if not ready:
            logger.warning("⚠ Retrieval backend did not become ready")
        return ready

    async def wait_until_ready(self) -> bool:
        url = f"{self.base_url}{self.config.ready_path}"
        async with httpx.AsyncClient(timeout=5.0) as client:
            for attempt in range(1, self.config.ready_attempts + 1):
                if self._process is not None and self._process.returncode is not None:
                    logger.error(
                        f"❌ Retrieval backend exited with code {self._process.returncode}"
                    )
                    return False
                try:
                    response = await client.get(url)
                    if response.is_success:
                        logger.info(f"✓ Retrieval backend ready at {self.base_url}")
                        return True
                except httpx.HTTPError:
                    pass
                logger.debug(
                    f"Waiting for retrieval backend ({attempt}/{self.config.ready_attempts})"
                )
                await asyncio.sleep(self.config.ready_delay)
        return False

    async def stop(self) -> None:
        """Terminate the backend, killing it if it ignores SIGTERM."""
        process = self._process
        if process is None:
            return
        if process.returncode is None:
            logger.info(f"🛑 Stopping retrieval backend (PID {process.pid})")
            try:
                process.send_signal(signal.SIGTERM)
                await asyncio.wait_for(process.wait(), timeout=self.config.stop_timeout)
            except ProcessLookupError:
                pass
            except TimeoutError:
                logger.warning("⚠ Retrieval backend ignored SIGTERM, killing")
                process.kill()
                await process.wait()

        for task in self._log_tasks:
            task.cancel()
        await asyncio.gather(*self._log_tasks, return_exceptions=True)
        self._log_tasks = []
        self._process = None

    async def _forward(self, stream: asyncio.StreamReader | None, level: int) -> None:
        if stream is None:
            return
        while True:
            line = await stream.readline()
            if not line:
                break
            logger.log(level, f"[backend] {line.decode(errors='replace').rstrip()}")

    async def __aenter__(self) -> "RetrievalBackendSupervisor":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()
