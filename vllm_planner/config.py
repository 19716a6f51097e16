"""Environment variable loading and configuration."""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJECT_ROOT / ".env")


def get_env(key: str, default: str | None = None) -> str:
    """Get an environment variable or raise if missing and no default."""
    value = os.getenv(key, default)
    if value is None:
        raise ValueError(f"Missing required environment variable: {key}")
    return value


# Heuristic: system overhead as a fraction of weights + KV cache + activations
OVERHEAD_FRACTION = float(get_env("VLLM_PLANNER_OVERHEAD_FRACTION", "0.10"))

# Command emission
MODEL_PLACEHOLDER = get_env("VLLM_PLANNER_MODEL_PLACEHOLDER", "MODEL_PATH")
CONTAINER_IMAGE = get_env("VLLM_PLANNER_IMAGE", "vllm/vllm-openai:latest")
SERVER_HOST = get_env("VLLM_PLANNER_HOST", "0.0.0.0")
SERVER_PORT = int(get_env("VLLM_PLANNER_PORT", "8000"))

# HuggingFace Hub (token optional, only needed for gated repos)
HF_API_BASE = get_env("HF_API_BASE", "https://huggingface.co").rstrip("/")
HF_TOKEN = os.getenv("HF_TOKEN")
HTTP_TIMEOUT = float(get_env("VLLM_PLANNER_HTTP_TIMEOUT", "30"))
