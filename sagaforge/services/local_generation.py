"""Local text generation with a Hugging Face Transformers causal language model.

:class:`LocalTextGenerator` is the raw-text capability: it has no way to force
a JSON reply, so it returns the decoded continuation and leaves it to
:class:`~sagaforge.services.generation.ModelInvoker` to fit that text into the
output shape.

* 4-bit loading is used only when ``bitsandbytes`` and a CUDA device are both
  available; otherwise the model loads in standard precision.
* Loading the weights and ``model.generate`` both block, so they run in a
  worker thread and other invocations in the process keep running.  The model
  loads on the first call, not at construction.
* A worker thread cannot be interrupted.  After a timeout the caller gets
  :class:`~sagaforge.services.generation.GenerationTimeout` at once, but the
  thread finishes its generation and the text is discarded.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Dict, Optional

import torch
from transformers import AutoModelForCausalLM, AutoTokenizer, BitsAndBytesConfig

from .contracts import OutputShape
from .generation import GenerationSettings

LOGGER = logging.getLogger(__name__)


class LocalTextGenerator:
    structured_output = False

    def __init__(
        self,
        settings: GenerationSettings,
        *,
        seed: int = 42,
        device_map: str | Dict[str, Any] | None = "auto",
        use_4bit: bool = True,
    ):
        self.settings = settings
        self.seed = seed
        self.device_map = device_map
        self.use_4bit = use_4bit
        self.model: Any = None
        self.tokenizer: Any = None
        self._load_lock = threading.Lock()

    def _ensure_loaded(self) -> None:
        with self._load_lock:
            if self.model is not None:
                return
            self._load()

    def _load(self) -> None:
        settings = self.settings
        torch.manual_seed(self.seed)
        if torch.cuda.is_available():
            torch.cuda.manual_seed_all(self.seed)

        model_kwargs: Dict[str, Any] = {"device_map": self.device_map, "torch_dtype": "auto"}
        quantization_config = self._build_quantization_config()
        if quantization_config is not None:
            model_kwargs["quantization_config"] = quantization_config

        LOGGER.info("Loading local text generator from %s", settings.local_model_path)
        model = AutoModelForCausalLM.from_pretrained(settings.local_model_path, **model_kwargs)
        model.eval()

        tokenizer = AutoTokenizer.from_pretrained(settings.local_model_path)
        if tokenizer.pad_token is None:
            # Many causal models ship without a pad token; reuse EOS.
            tokenizer.pad_token = tokenizer.eos_token
        if tokenizer.padding_side != "left":
            tokenizer.padding_side = "left"

        self.tokenizer = tokenizer
        self.model = model

    def _build_quantization_config(self) -> Optional[BitsAndBytesConfig]:
        if not self.use_4bit:
            return None

        if not torch.cuda.is_available():
            LOGGER.info("CUDA is not available; skipping 4-bit quantisation.")
            return None

        try:
            import bitsandbytes  # type: ignore  # noqa: F401
        except ImportError:
            LOGGER.info("bitsandbytes not installed; using full precision model loading.")
            return None

        LOGGER.info("Loading model with 4-bit quantisation enabled.")
        return BitsAndBytesConfig(
            load_in_4bit=True,
            bnb_4bit_use_double_quant=True,
            bnb_4bit_quant_type="nf4",
            bnb_4bit_compute_dtype=torch.float16,
        )

    async def invoke(self, prompt: str, shape: OutputShape) -> str:
        return await asyncio.to_thread(self.generate_response, prompt)

    def generate_response(self, prompt: str) -> str:
        """Generate a response to ``prompt`` without echoing it back."""

        self._ensure_loaded()
        generation_kwargs: Dict[str, Any] = {
            "max_new_tokens": self.settings.max_output_tokens,
            "do_sample": True,
            "pad_token_id": self.tokenizer.pad_token_id,
        }
        if self.settings.temperature is not None:
            generation_kwargs["temperature"] = self.settings.temperature
        if self.settings.top_p is not None:
            generation_kwargs["top_p"] = self.settings.top_p

        enc = self.tokenizer(prompt, return_tensors="pt").to(self.model.device)
        with torch.no_grad():
            out = self.model.generate(**enc, **generation_kwargs)

        prompt_len = enc["input_ids"].shape[-1]
        generated_ids = out[0, prompt_len:]
        if generated_ids.numel() == 0:
            return ""
        return self.tokenizer.decode(generated_ids, skip_special_tokens=True).strip()
