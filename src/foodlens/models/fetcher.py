import asyncio
import functools
import sys
from pathlib import Path
from typing import Optional, Union

import psutil
import requests
from huggingface_hub import snapshot_download
from huggingface_hub.utils import HfHubHTTPError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from foodlens.common.logger import create_logger
from foodlens.errors import DownloadError

logger = create_logger(__name__)

# Network-related exceptions that should trigger retries
NETWORK_EXCEPTIONS = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    requests.exceptions.RequestException,
    HfHubHTTPError,
    TimeoutError,
    ConnectionError,
)


def _download_model_subprocess(repo_id: str, local_dir: str):
    """Standalone function to download an artifact - runs in subprocess."""
    @retry(
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=1, min=1, max=60),
        retry=retry_if_exception_type(NETWORK_EXCEPTIONS),
        reraise=True,
    )
    def _download_with_retry():
        return snapshot_download(repo_id=repo_id, local_dir=local_dir)

    return _download_with_retry()


class SubprocessFetcher:
    """Fetches an artifact in a child process so cancellation can stop it.

    Cancelling the awaiting task terminates the whole process tree; a
    thread running ``snapshot_download`` could not be interrupted.
    """

    def __init__(self, timeout_seconds: float = 86400):
        self.timeout_seconds = timeout_seconds

    async def fetch(self, model_id: str, destination: Union[str, Path]) -> None:
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)

        cmd = [
            sys.executable, "-c",
            f"from foodlens.models.fetcher import _download_model_subprocess; "
            f"_download_model_subprocess({repr(model_id)}, {repr(str(destination))})"
        ]

        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
        logger.info(f"Download subprocess for {model_id} started with PID {process.pid}")

        try:
            _, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            await terminate_process_tree(process)
            raise DownloadError(f"Download timeout after {self.timeout_seconds:.0f} seconds")
        except asyncio.CancelledError:
            logger.info(f"Download of {model_id} cancelled, stopping subprocess")
            await terminate_process_tree(process)
            raise

        if process.returncode != 0:
            error_output = stderr.decode("utf-8", errors="replace")
            logger.error(
                f"Download subprocess failed with exit code {process.returncode}: {error_output}"
            )
            raise DownloadError(parse_download_error(model_id, error_output))

        logger.info(f"Download subprocess for {model_id} finished")


def parse_download_error(model_id: str, error_output: str) -> str:
    if "RepositoryNotFoundError" in error_output:
        return f"Repository not found: {model_id}"
    if "GatedRepoError" in error_output:
        return f"Repository requires authorization: {model_id}"
    lines = [line for line in error_output.strip().splitlines() if line.strip()]
    if not lines:
        return "Download subprocess failed"
    return lines[-1][:500]


async def terminate_process_tree(process: Optional[asyncio.subprocess.Process]):
    """Terminate the process and all its children."""
    if process is None or process.returncode is not None:
        return

    pid = process.pid

    try:
        parent = psutil.Process(pid)
        processes = parent.children(recursive=True) + [parent]

        for p in processes:
            try:
                p.terminate()
            except psutil.NoSuchProcess:
                pass

        logger.info(f"Sent SIGTERM to process tree (PID {pid}), waiting for graceful shutdown...")

        loop = asyncio.get_running_loop()
        _, alive = await loop.run_in_executor(
            None, functools.partial(psutil.wait_procs, processes, timeout=5)
        )

        for p in alive:
            try:
                p.kill()
            except psutil.NoSuchProcess:
                pass

    except psutil.NoSuchProcess:
        logger.debug(f"Process {pid} already terminated")

    try:
        await asyncio.wait_for(process.wait(), timeout=10)
    except asyncio.TimeoutError:
        logger.warning(f"Process {pid} did not terminate after 10s")
