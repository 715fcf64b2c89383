"""Default model backend built on HuggingFace transformers."""

import asyncio
import gc
import threading
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

import torch
from transformers import (
    AutoModelForCausalLM,
    AutoTokenizer,
    StoppingCriteria,
    StoppingCriteriaList,
    TextIteratorStreamer,
)

from foodlens.common.logger import create_logger
from foodlens.errors import ModelLoadError

logger = create_logger(__name__)


def resolve_device(device: str = "auto") -> str:
    if device != "auto":
        return device
    if torch.cuda.is_available():
        return "cuda:0"
    if getattr(torch.backends, "mps", None) is not None and torch.backends.mps.is_available():
        return "mps"
    return "cpu"


@dataclass
class TransformersHandle:
    model: Any
    tokenizer: Any
    device: str
    path: str


class TransformersModelLoader:
    def __init__(self, device: str = "auto"):
        self.device = resolve_device(device)

    def load(self, path: str) -> TransformersHandle:
        logger.info(f"Loading transformers model from {path} on {self.device}")
        try:
            tokenizer = AutoTokenizer.from_pretrained(path)
            model = AutoModelForCausalLM.from_pretrained(path)
            model.to(self.device)
            model.eval()
        except (OSError, ValueError) as e:
            raise ModelLoadError(str(e)) from e
        return TransformersHandle(model=model, tokenizer=tokenizer, device=self.device, path=path)

    def release(self, handle: TransformersHandle) -> None:
        handle.model = None
        handle.tokenizer = None
        gc.collect()
        if torch.cuda.is_available():
            torch.cuda.empty_cache()


class _StopOnEvent(StoppingCriteria):
    def __init__(self, stop_event: threading.Event):
        self.stop_event = stop_event

    def __call__(self, input_ids, scores, **kwargs):
        return self.stop_event.is_set()


class TransformersEngine:
    """Streams fragments from ``model.generate`` running in a worker thread.

    Closing the returned iterator (including through task cancellation)
    stops the worker at its next token.
    """

    def __init__(self, max_new_tokens: int = 512):
        self.max_new_tokens = max_new_tokens

    def _encode(self, handle: TransformersHandle, prompt: str):
        tokenizer = handle.tokenizer
        if getattr(tokenizer, "chat_template", None):
            return tokenizer.apply_chat_template(
                [{"role": "user", "content": prompt}],
                add_generation_prompt=True,
                return_tensors="pt",
            ).to(handle.device)
        return tokenizer(prompt, return_tensors="pt").input_ids.to(handle.device)

    async def stream(self, handle: TransformersHandle, prompt: str) -> AsyncIterator[str]:
        if handle.model is None:
            raise RuntimeError("Model handle has been released")

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        stop_event = threading.Event()
        done = object()

        def _worker():
            error: Optional[BaseException] = None
            try:
                with torch.inference_mode():
                    input_ids = self._encode(handle, prompt)
                    streamer = TextIteratorStreamer(
                        handle.tokenizer,
                        skip_prompt=True,
                        skip_special_tokens=False,
                    )
                    gen_kwargs = {
                        "input_ids": input_ids,
                        "max_new_tokens": self.max_new_tokens,
                        "streamer": streamer,
                        "stopping_criteria": StoppingCriteriaList([_StopOnEvent(stop_event)]),
                    }
                    thread = threading.Thread(target=handle.model.generate, kwargs=gen_kwargs, daemon=True)
                    thread.start()
                    for text in streamer:
                        if text:
                            loop.call_soon_threadsafe(queue.put_nowait, text)
                    thread.join()
            except Exception as e:
                error = e
            finally:
                loop.call_soon_threadsafe(queue.put_nowait, error if error is not None else done)

        threading.Thread(target=_worker, daemon=True).start()

        try:
            while True:
                item = await queue.get()
                if item is done:
                    break
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            stop_event.set()
