import logging
import os
import re
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

# PU3.0 game contract on Base mainnet
DEFAULT_CONTRACT = "0x6a242970f55e050cb54da489751d562083abd4b7"

_ADDR_RE = re.compile(r"^0x[0-9a-f]{40}$")
_PLACEHOLDER_RE = re.compile(r"\$\{[^}]*\}")


class EndpointCfg(BaseModel):
    name: str
    url: str
    max_block_range: int = Field(gt=0)
    requests_per_window: int = Field(default=10, gt=0)
    window_seconds: float = Field(default=1.0, gt=0)

    @field_validator("url")
    @classmethod
    def must_be_https(cls, v: str) -> str:
        if not v.startswith("https://"):
            raise ValueError("RPC URL must be HTTPS")
        return v


class RPC(BaseModel):
    timeout: float = 15.0
    request_delay_seconds: float = 0.1
    failure_threshold: int = 3
    failure_cooldown_seconds: float = 60.0
    max_rate_wait_seconds: float = 2.0
    override_max_block_range: int = Field(default=1000, gt=0)
    endpoints: List[EndpointCfg] = []


class Contract(BaseModel):
    address: str = DEFAULT_CONTRACT

    @field_validator("address")
    @classmethod
    def must_be_address(cls, v: str) -> str:
        a = v.strip().lower()
        if not _ADDR_RE.match(a):
            raise ValueError(f"invalid contract address: {v!r}")
        return a


class Search(BaseModel):
    windows: List[int] = [10_000, 50_000, 100_000]
    # ~12 hours of 2s Base blocks
    lookback_blocks: int = Field(default=21_600, gt=0)
    max_iterations: int = 5
    max_lookback_blocks: int = 216_000
    iteration_delay_seconds: float = 0.3
    timeout_seconds: float = 30.0
    display_limit: int = 3

    @field_validator("windows")
    @classmethod
    def ascending_windows(cls, v: List[int]) -> List[int]:
        if not v or any(w <= 0 for w in v) or sorted(v) != v:
            raise ValueError("search windows must be positive and ascending")
        return v


class Monitor(BaseModel):
    receipt_timeout_seconds: float = 180.0
    overall_timeout_seconds: float = 420.0
    receipt_poll_interval_seconds: float = 2.0
    poll_delays_seconds: List[float] = [5, 10, 15, 20, 30]
    poll_radii: List[int] = [5, 10, 20, 30, 50]
    poller_interval_seconds: float = 30.0
    poller_max_duration_seconds: float = 180.0
    poller_attempt_timeout_seconds: float = 5.0


class Settings(BaseModel):
    network: str = "base"
    rpc: RPC = RPC()
    contract: Contract = Contract()
    search: Search = Search()
    monitor: Monitor = Monitor()


def _expand_endpoints(cfg: dict) -> None:
    """Resolve ${VAR} placeholders in endpoint URLs, dropping unresolved ones."""
    rpc = cfg.get("rpc") or {}
    kept = []
    for ep in rpc.get("endpoints") or []:
        url = os.path.expandvars(str(ep.get("url", "")))
        if _PLACEHOLDER_RE.search(url):
            logger.warning("Skipping endpoint %s: unresolved placeholder in url", ep.get("name"))
            continue
        kept.append({**ep, "url": url})

    # allow secure override via env at runtime
    env_rpc = os.environ.get("RPC_URL_OVERRIDE", "")
    cap = rpc.get("override_max_block_range", RPC.model_fields["override_max_block_range"].default)
    for i, u in enumerate([u.strip() for u in env_rpc.split(",") if u.strip()], start=1):
        kept.append({"name": f"override-{i}", "url": u, "max_block_range": cap})

    if rpc or kept:
        cfg["rpc"] = {**rpc, "endpoints": kept}


def load_settings(path: str = "config.yaml") -> Settings:
    import yaml

    cfg: Optional[dict] = None
    if os.path.exists(path):
        with open(path, "r") as f:
            cfg = yaml.safe_load(f)
    else:
        logger.info("No config file at %s, using defaults", path)
    cfg = cfg or {}

    _expand_endpoints(cfg)

    try:
        return Settings.model_validate(cfg)
    except ValidationError as e:
        raise RuntimeError(f"Configuration error in {path}: {e}") from e
