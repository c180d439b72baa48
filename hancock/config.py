"""
Runtime configuration from the environment and an optional .env file.

Recognised keys (.env or system env):

    CA_BASE_DIR=~/.hancock
    CA_PASSWORD=<passphrase for CA private keys>
    HANCOCK_LOG_LEVEL=INFO
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import find_dotenv, load_dotenv

DEFAULT_BASE_DIR = "~/.hancock"


@dataclass
class Config:
    base_dir: str
    password: Optional[str]
    log_level: str


def load_config() -> Config:
    # .env is looked up from the working directory upwards; values already
    # present in the environment win over the file.
    load_dotenv(find_dotenv(usecwd=True), override=False)
    return Config(
        base_dir=os.getenv("CA_BASE_DIR", DEFAULT_BASE_DIR),
        password=os.getenv("CA_PASSWORD") or None,
        log_level=os.getenv("HANCOCK_LOG_LEVEL", "INFO").upper(),
    )
