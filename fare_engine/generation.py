# fare_engine/generation.py
import json
import re
import threading
from datetime import time
from typing import Optional, Tuple

import torch
from transformers import AutoTokenizer, AutoModelForCausalLM, GenerationConfig
from peft import PeftModel

from fare_engine.models import EstimateFareInput
from fare_engine.tools.clock import parse_clock

# =========================
# Pricing policy (advisory; the model is asked to follow it)
# =========================
BASE_FARE = {"Standard": 500.0, "Luxury": 1000.0}
RATE_PER_KM = {"Standard": 2.0, "Luxury": 3.0}
MIN_CHARGED_KM = 300.0            # floor: a 300 km / 24-hour journey
PRIME_TIME_SURCHARGE = 0.20
PRIME_TIME_WINDOW = (time(18, 0), time(22, 0))   # [start, end)

SYSTEM_PREFIX = (
    "You are a fare estimation service for intercity bus routes in India. "
    "Reply with a single JSON object and nothing else."
)

PROMPT_TEMPLATE = """Calculate an estimated bus fare in INR from the trip below, following the pricing rules.

Pricing rules:
| Bus Type | Base Fare | Rate per km |
|----------|-----------|-------------|
| Standard | 500       | 2/km        |
| Luxury   | 1000      | 3/km        |

1. Charged distance is the trip distance, but never less than {min_km:.0f} km (a 24-hour journey).
2. Fare = Base Fare + (charged distance * Rate per km).
3. Add a {surcharge:.0f}% surcharge when the time of travel falls between 18:00 and 22:00.

Trip:
- Start Location: {start}
- Destination: {destination}
- Distance: {distance} KM
- Bus Type: {bus_type}
- Time of Travel: {time_of_travel}

Return JSON with exactly these keys:
- "estimatedFare": number, the estimated fare in INR
- "nearbyOperators": string, bus operators within a 50 KM radius of the start location (placeholder names are fine)
"""

def build_prompt(inp: EstimateFareInput) -> str:
    return PROMPT_TEMPLATE.format(
        min_km=MIN_CHARGED_KM,
        surcharge=PRIME_TIME_SURCHARGE * 100,
        start=inp.start_location,
        destination=inp.destination,
        distance=inp.distance_km,
        bus_type=inp.bus_type,
        time_of_travel=inp.time_of_travel,
    )

# =========================
# Time-of-travel parsing
# =========================
EVENING_RE = re.compile(r"\b(evening|dusk|sunset)\b", re.I)

def in_prime_time(time_of_travel: str) -> bool:
    t = parse_clock(time_of_travel)
    if t is None:
        return bool(EVENING_RE.search(time_of_travel or ""))
    start, end = PRIME_TIME_WINDOW
    return start <= t < end

def policy_tier(bus_type: str) -> str:
    key = (bus_type or "").strip().lower()
    return "Luxury" if key in {"luxury", "ac"} else "Standard"

def policy_fare(inp: EstimateFareInput) -> float:
    tier = policy_tier(inp.bus_type)
    km = max(inp.distance_km, MIN_CHARGED_KM)
    fare = BASE_FARE[tier] + km * RATE_PER_KM[tier]
    if in_prime_time(inp.time_of_travel):
        fare *= 1 + PRIME_TIME_SURCHARGE
    return round(fare, 2)

# =========================
# Providers: (prompt, trip) -> text
# =========================
class RulesTextGenerator:
    """
    Deterministic provider: evaluates the pricing rules itself and answers in the
    same JSON shape a model would. Selected explicitly via settings, for offline
    runs and tests.
    """

    def __init__(self, operators: str = "Local operators: contact the nearest depot for availability."):
        self.operators = operators

    def __call__(self, prompt: str, inp: EstimateFareInput) -> str:
        return json.dumps({
            "estimatedFare": policy_fare(inp),
            "nearbyOperators": self.operators,
        })


def _bf16_supported() -> bool:
    try:
        return bool(getattr(torch.cuda, "is_bf16_supported", lambda: False)())
    except Exception:
        return False


def load_model_and_tokenizer(
    base_model_id: str,
    adapter_id: Optional[str] = None,
    hf_token: Optional[str] = None,
    device_map: str = "auto",
) -> Tuple[AutoTokenizer, AutoModelForCausalLM]:
    """
    Loads base model (4-bit if CUDA available) and, if given, a PEFT adapter on top.
    """
    is_cuda = torch.cuda.is_available()

    tok = AutoTokenizer.from_pretrained(base_model_id, use_fast=True, token=hf_token)
    if tok.pad_token is None:
        tok.pad_token = tok.eos_token

    if is_cuda:
        # 4-bit quant for GPU
        from transformers import BitsAndBytesConfig
        compute_dtype = torch.bfloat16 if _bf16_supported() else torch.float16
        bnb = BitsAndBytesConfig(
            load_in_4bit=True,
            bnb_4bit_compute_dtype=compute_dtype,
            bnb_4bit_use_double_quant=True,
            bnb_4bit_quant_type="nf4",
        )
        model = AutoModelForCausalLM.from_pretrained(
            base_model_id,
            quantization_config=bnb,
            device_map=device_map,
            token=hf_token,
        )
    else:
        # CPU fallback (slow; for dev only)
        model = AutoModelForCausalLM.from_pretrained(
            base_model_id,
            device_map="cpu",
            torch_dtype=torch.float32,
            low_cpu_mem_usage=True,
            token=hf_token,
        )

    if adapter_id:
        # LoRA adapter (HF repo ID or local path)
        model = PeftModel.from_pretrained(model, adapter_id, token=hf_token)

    return tok, model.eval()


class HFTextGenerator:
    """
    Local Hugging Face causal LM. Weights load on first call (not at import) and
    are reused for the life of the process.
    """

    def __init__(
        self,
        base_model_id: str,
        adapter_id: Optional[str] = None,
        hf_token: Optional[str] = None,
        max_new_tokens: int = 160,
    ):
        self.base_model_id = base_model_id
        self.adapter_id = adapter_id or None
        self.hf_token = hf_token
        self.max_new_tokens = max_new_tokens
        self._tok = None
        self._model = None
        self._lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._model is not None

    def _ensure_loaded(self):
        with self._lock:
            if self._model is None:
                self._tok, self._model = load_model_and_tokenizer(
                    self.base_model_id, self.adapter_id, self.hf_token
                )
        return self._tok, self._model

    def __call__(self, prompt: str, inp: Optional[EstimateFareInput] = None) -> str:
        tok, model = self._ensure_loaded()
        messages = [
            {"role": "system", "content": SYSTEM_PREFIX},
            {"role": "user", "content": prompt},
        ]
        # Build prompt as STRING, then tokenize to dict
        text = tok.apply_chat_template(messages, tokenize=False, add_generation_prompt=True)
        inputs = tok(text, return_tensors="pt")
        inputs = {k: v.to(model.device) for k, v in inputs.items()}

        # Deterministic decoding; the answer is still not guaranteed stable across models/versions
        gen_cfg = GenerationConfig(
            do_sample=False,
            max_new_tokens=self.max_new_tokens,
            pad_token_id=tok.pad_token_id,
            eos_token_id=tok.eos_token_id,
        )
        with torch.inference_mode():
            out = model.generate(**inputs, generation_config=gen_cfg)

        # Decode ONLY the new tokens after the prompt
        prompt_len = inputs["input_ids"].shape[1]
        return tok.decode(out[0, prompt_len:], skip_special_tokens=True).strip()
