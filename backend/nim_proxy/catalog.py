"""Client-facing model aliases and the NIM model ids they map to."""
from types import MappingProxyType
from typing import List, Mapping, Optional

from .errors import UnknownModelError

SERVICE_NAME = "NVIDIA NIM OpenAI Proxy"
OWNED_BY = "nvidia-nim"

MODEL_MAPPING: Mapping[str, str] = MappingProxyType({
    "deepseek-v3.2": "deepseek-ai/deepseek-v3.2",
    "glm5": "zhipuai/glm-5",
    "glm4.7": "zhipuai/glm-4.7",
    "kimi-k2.5": "moonshotai/kimi-k2.5",
})

DEFAULT_MODEL = "deepseek-v3.2"


def list_aliases() -> List[str]:
    return list(MODEL_MAPPING)


def resolve_model(alias: Optional[str], default: str = DEFAULT_MODEL, strict: bool = False) -> str:
    upstream = MODEL_MAPPING.get(alias) if alias is not None else None
    if upstream is not None:
        return upstream
    if strict:
        raise UnknownModelError(alias)
    # unknown alias falls back to the default model
    return MODEL_MAPPING[default]
