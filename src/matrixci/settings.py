from __future__ import annotations
import os

CONFIG_PATH = os.environ.get("MATRIXCI_CONFIG") or None
WORKSPACE = os.environ.get("MATRIXCI_WORKSPACE", ".")
MAX_WORKERS = int(os.environ["MATRIXCI_WORKERS"]) if os.environ.get("MATRIXCI_WORKERS") else None
STEP_TIMEOUT = float(os.environ["MATRIXCI_STEP_TIMEOUT"]) if os.environ.get("MATRIXCI_STEP_TIMEOUT") else None

# looked up in the current directory, in this order, when --config is omitted
CONFIG_CANDIDATES = (".matrixci.yml", ".matrixci.yaml", ".travis.yml")
